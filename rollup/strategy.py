"""
Yield strategy collaborators.

The rollup only ever talks to a strategy from execute_block (aggregate
commit/uncommit) and sync_balance. How a strategy earns yield is its own
business; DummyStrategy simulates it by pulling a fixed gain from a funder
on every harvest.
"""

from abc import ABC, abstractmethod

from rollup.token import Token


class Strategy(ABC):
    address: str
    
    @abstractmethod
    def get_asset_address(self) -> str:
        """Address of the base asset this strategy accepts."""
    
    @abstractmethod
    def get_balance(self) -> int:
        """Current asset balance under management."""
    
    @abstractmethod
    def harvest(self):
        """Realise external yield into more base asset."""
    
    def sync_balance(self) -> int:
        """Harvest, then report the updated balance."""
        self.harvest()
        return self.get_balance()
    
    @abstractmethod
    def aggregate_commit(self, sender: str, amount: int):
        """Pull `amount` of the asset from the controller."""
    
    @abstractmethod
    def aggregate_uncommit(self, sender: str, amount: int):
        """Push `amount` of the asset back to the controller."""


class DummyStrategy(Strategy):
    def __init__(self, address: str, controller: str, asset: Token, funder: str = "", harvest_gain: int = 0):
        self.address = address
        self.controller = controller
        self.asset = asset
        self.funder = funder
        self.harvest_gain = harvest_gain
    
    def _only_controller(self, sender: str):
        if sender != self.controller:
            raise ValueError("caller is not controller")
    
    def get_asset_address(self) -> str:
        return self.asset.address
    
    def get_balance(self) -> int:
        return self.asset.balance_of(self.address)
    
    def harvest(self):
        if self.harvest_gain > 0 and self.funder:
            self.asset.transfer_from(self.address, self.funder, self.address, self.harvest_gain)
    
    def aggregate_commit(self, sender: str, amount: int):
        self._only_controller(sender)
        self.asset.transfer_from(self.address, self.controller, self.address, amount)
    
    def aggregate_uncommit(self, sender: str, amount: int):
        self._only_controller(sender)
        self.asset.transfer(self.address, self.controller, amount)
