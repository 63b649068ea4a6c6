"""
Base-ledger assets held in custody by the rollup.

A minimal fungible-token book (balances + allowances) and a wrapped native
token. Transfers either complete or raise ValueError without side effects.
"""

from collections import defaultdict
from typing import Dict, Tuple


class Token:
    def __init__(self, address: str, symbol: str = "TKN", decimals: int = 18):
        self.address = address
        self.symbol = symbol
        self.decimals = decimals
        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str], int] = defaultdict(int)
        self.total_supply = 0
    
    def mint(self, to: str, amount: int):
        if amount < 0:
            raise ValueError("ERC20: invalid amount")
        self.balances[to] += amount
        self.total_supply += amount
    
    def balance_of(self, owner: str) -> int:
        return self.balances.get(owner, 0)
    
    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)
    
    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError("ERC20: invalid amount")
        self.allowances[(owner, spender)] = amount
        return True
    
    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError("ERC20: invalid amount")
        if self.balance_of(sender) < amount:
            raise ValueError("ERC20: transfer amount exceeds balance")
        self.balances[sender] -= amount
        self.balances[recipient] += amount
        return True
    
    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        if self.allowance(owner, spender) < amount:
            raise ValueError("ERC20: insufficient allowance")
        self.transfer(owner, recipient, amount)
        self.allowances[(owner, spender)] -= amount
        return True


class WrappedNativeToken(Token):
    """Token backed 1:1 by native balances, used for native-asset deposits."""
    
    def __init__(self, address: str, symbol: str = "WETH", decimals: int = 18):
        super().__init__(address, symbol, decimals)
        self.native_balances: Dict[str, int] = defaultdict(int)
    
    def fund_native(self, to: str, amount: int):
        self.native_balances[to] += amount
    
    def native_balance_of(self, owner: str) -> int:
        return self.native_balances.get(owner, 0)
    
    def send_native(self, sender: str, recipient: str, amount: int):
        if amount < 0 or self.native_balance_of(sender) < amount:
            raise ValueError("Insufficient native balance")
        self.native_balances[sender] -= amount
        self.native_balances[recipient] += amount
    
    def wrap(self, sender: str, amount: int):
        if amount < 0 or self.native_balance_of(sender) < amount:
            raise ValueError("Insufficient native balance")
        self.native_balances[sender] -= amount
        self.mint(sender, amount)
    
    def unwrap(self, sender: str, amount: int):
        if amount < 0 or self.balance_of(sender) < amount:
            raise ValueError("ERC20: burn amount exceeds balance")
        self.balances[sender] -= amount
        self.total_supply -= amount
        self.native_balances[sender] += amount
