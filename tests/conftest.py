# tests/conftest.py
from dataclasses import dataclass

import pytest

from rollup.aggregator import BlockBuilder
from rollup.crypto_utils import generate_keypair, derive_address
from rollup.registry import Registry
from rollup.rollup_chain import RollupChain
from rollup.strategy import DummyStrategy
from rollup.token import Token, WrappedNativeToken

OWNER = "0xowner"
OPERATOR = "0xoperator"
FUNDER = "0xfunder"
TOKEN_ADDRESS = "0xtoken"
WETH_ADDRESS = "0xweth"
STRATEGY_ADDRESS = "0xstrategy"

CHALLENGE_PERIOD = 100
DEPOSIT_LIMIT = 10 ** 24


@dataclass
class User:
    private_key: str
    public_key: str
    address: str


def new_user() -> User:
    private_key, public_key = generate_keypair()
    return User(private_key, public_key, derive_address(public_key))


@pytest.fixture
def registry():
    registry = Registry()
    registry.register_asset(TOKEN_ADDRESS)
    registry.register_asset(WETH_ADDRESS)
    registry.register_strategy(STRATEGY_ADDRESS)
    return registry


@pytest.fixture
def token():
    return Token(TOKEN_ADDRESS, "TKN")


@pytest.fixture
def weth():
    return WrappedNativeToken(WETH_ADDRESS)


@pytest.fixture
def rollup(registry, token, weth):
    """Rollup ledger with one token, wrapped native and one strategy attached. Status output off."""
    chain = RollupChain(registry, owner=OWNER, operator=OPERATOR,
                        block_challenge_period=CHALLENGE_PERIOD, quiet=True)
    chain.attach_token(token)
    chain.attach_token(weth)
    chain.set_net_deposit_limit(OWNER, TOKEN_ADDRESS, DEPOSIT_LIMIT)
    chain.set_net_deposit_limit(OWNER, WETH_ADDRESS, DEPOSIT_LIMIT)
    return chain


@pytest.fixture
def strategy(rollup, token):
    strategy = DummyStrategy(STRATEGY_ADDRESS, controller=rollup.address, asset=token, funder=FUNDER)
    rollup.attach_strategy(strategy)
    token.mint(FUNDER, 10 ** 6)
    token.approve(FUNDER, STRATEGY_ADDRESS, 10 ** 6)
    return strategy


@pytest.fixture
def make_user(rollup, token):
    """Factory: a fresh keypair whose address holds `balance` tokens approved to the rollup."""
    def _make_user(balance: int = 1000) -> User:
        user = new_user()
        token.mint(user.address, balance)
        token.approve(user.address, rollup.address, balance)
        return user
    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def builder():
    # strategy 1 invests asset 1
    return BlockBuilder({1: 1})
