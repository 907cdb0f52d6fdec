import asyncio

import pytest

from statecoin.activity_log import Action
from statecoin.coin_types import StateCoinStatus
from statecoin.errors import InvalidAddress, InvalidState, ProtocolViolation
from statecoin.http_client import POST_ROUTE
from statecoin.signing import PURPOSE_WITHDRAW, StateChainSig, public_key_hex
from statecoin.transaction import pubkey_to_btc_addr, tx_from_hex, tx_output_address

from .conftest import FEE_WITHDRAW, add_available_coin


@pytest.fixture
def rec_address():
    return pubkey_to_btc_addr(public_key_hex(bytes([11]) * 32))


@pytest.mark.asyncio
async def test_withdraw(wallet, client, electrum, rec_address, fee_address):
    coin = add_available_coin(wallet, client)

    tx_hex = await wallet.withdraw(coin.shared_key_id, rec_address)

    withdrawn = wallet.statecoins.get_coin(coin.shared_key_id)
    assert withdrawn.status == StateCoinStatus.WITHDRAWN
    assert withdrawn.tx_withdraw == tx_hex
    assert electrum.broadcasts == [tx_hex]
    assert wallet.activity.get_items(1)[0].action == Action.WITHDRAW

    tx = tx_from_hex(tx_hex)
    assert len(tx.vout) == 2
    assert sum(out.nValue for out in tx.vout) == coin.value - 300
    assert tx.vout[1].nValue == FEE_WITHDRAW
    assert tx_output_address(tx_hex, 0) == rec_address
    assert tx_output_address(tx_hex, 1) == fee_address
    assert len(tx.wit.vtxinwit[0].scriptWitness.stack) == 2

    withdraw_msg_1 = client.posted(POST_ROUTE.WITHDRAW_INIT)[0]
    sig = StateChainSig.from_dict(withdraw_msg_1["statechain_sig"])
    assert sig.purpose == PURPOSE_WITHDRAW
    assert sig.data == rec_address
    assert sig.verify(coin.proof_key)

    _, total = wallet.get_unspent_statecoins()
    assert total == 0


@pytest.mark.asyncio
async def test_withdraw_invalid_address(wallet, client):
    coin = add_available_coin(wallet, client)
    with pytest.raises(InvalidAddress):
        await wallet.withdraw(coin.shared_key_id, "xyz")
    assert client.posts == []
    assert wallet.statecoins.get_coin(coin.shared_key_id).status == StateCoinStatus.AVAILABLE


@pytest.mark.asyncio
async def test_withdraw_excessive_fee(wallet, client, electrum, rec_address):
    coin = add_available_coin(wallet, client)
    client.fee_info["withdraw"] = 1000
    with pytest.raises(ProtocolViolation):
        await wallet.withdraw(coin.shared_key_id, rec_address)
    assert wallet.statecoins.get_coin(coin.shared_key_id).status == StateCoinStatus.AVAILABLE
    assert electrum.broadcasts == []


@pytest.mark.asyncio
async def test_withdraw_twice(wallet, client, rec_address):
    coin = add_available_coin(wallet, client)
    await wallet.withdraw(coin.shared_key_id, rec_address)
    with pytest.raises(InvalidState):
        await wallet.withdraw(coin.shared_key_id, rec_address)


@pytest.mark.asyncio
async def test_concurrent_operations_on_one_coin(wallet, client, rec_address):
    coin = add_available_coin(wallet, client)
    gate = asyncio.Event()
    client.gates[POST_ROUTE.WITHDRAW_INIT] = gate

    first = asyncio.create_task(wallet.withdraw(coin.shared_key_id, rec_address))
    await asyncio.sleep(0)
    with pytest.raises(InvalidState, match="in progress"):
        await wallet.withdraw(coin.shared_key_id, rec_address)
    with pytest.raises(InvalidState, match="in progress"):
        await wallet.transfer_sender(coin.shared_key_id, public_key_hex(bytes([12]) * 32))

    gate.set()
    await first
    assert wallet.statecoins.get_coin(coin.shared_key_id).status == StateCoinStatus.WITHDRAWN


@pytest.mark.asyncio
async def test_guard_released_after_failure(wallet, client, rec_address):
    coin = add_available_coin(wallet, client)
    client.fee_info["withdraw"] = 1000
    with pytest.raises(ProtocolViolation):
        await wallet.withdraw(coin.shared_key_id, rec_address)

    client.fee_info["withdraw"] = FEE_WITHDRAW
    await wallet.withdraw(coin.shared_key_id, rec_address)
    assert wallet.statecoins.get_coin(coin.shared_key_id).status == StateCoinStatus.WITHDRAWN
