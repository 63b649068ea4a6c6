"""
Asset and strategy registry.

Assigns stable integer ids to asset and strategy addresses. Id 0 is
reserved, ids are never reassigned, and the rollup core only reads from it.
"""

from typing import Dict, Optional


class Registry:
    def __init__(self):
        self.asset_address_to_id: Dict[str, int] = {}
        self.asset_id_to_address: Dict[int, str] = {}
        self.strategy_address_to_id: Dict[str, int] = {}
        self.strategy_id_to_address: Dict[int, str] = {}
    
    def register_asset(self, asset_address: str) -> int:
        if not asset_address:
            raise ValueError("Invalid asset")
        if asset_address in self.asset_address_to_id:
            raise ValueError("Asset already registered")
        
        asset_id = len(self.asset_address_to_id) + 1
        self.asset_address_to_id[asset_address] = asset_id
        self.asset_id_to_address[asset_id] = asset_address
        return asset_id
    
    def register_strategy(self, strategy_address: str) -> int:
        if not strategy_address:
            raise ValueError("Invalid strategy")
        if strategy_address in self.strategy_address_to_id:
            raise ValueError("Strategy already registered")
        
        strategy_id = len(self.strategy_address_to_id) + 1
        self.strategy_address_to_id[strategy_address] = strategy_id
        self.strategy_id_to_address[strategy_id] = strategy_address
        return strategy_id
    
    def asset_address_to_index(self, asset_address: str) -> int:
        """Asset id, or 0 if the address is not registered."""
        return self.asset_address_to_id.get(asset_address, 0)
    
    def asset_index_to_address(self, asset_id: int) -> Optional[str]:
        return self.asset_id_to_address.get(asset_id)
    
    def strategy_address_to_index(self, strategy_address: str) -> int:
        """Strategy id, or 0 if the address is not registered."""
        return self.strategy_address_to_id.get(strategy_address, 0)
    
    def strategy_index_to_address(self, strategy_id: int) -> Optional[str]:
        return self.strategy_id_to_address.get(strategy_id)
