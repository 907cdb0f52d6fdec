import json

import pytest
import pytest_asyncio

from statecoin.config import Config
from statecoin.errors import InvalidState, NotFound
from statecoin.keys import KeyChain
from statecoin.storage import STORE_VERSION, WalletStore, decrypt_mnemonic, encrypt_mnemonic
from statecoin.wallet import Wallet

from .conftest import MNEMONIC, MockElectrumClient, add_available_coin


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.network == "testnet"
        assert config.min_anon_set == 10
        assert config.required_confirmations == 3
        assert config.electrum_config["port"] == 50001

    def test_update(self):
        config = Config()
        config.update({"min_anon_set": 5, "notifications": False})
        assert config.min_anon_set == 5
        assert not config.notifications

    def test_update_unknown_key_sets_nothing(self):
        config = Config()
        with pytest.raises(ValueError, match="Config entry does not exist: nope"):
            config.update({"min_anon_set": 5, "nope": 1})
        assert config.min_anon_set == 10

    def test_update_unknown_network(self):
        with pytest.raises(ValueError):
            Config().update({"network": "litecoin"})

    def test_defaults_not_shared(self):
        first, second = Config(), Config()
        first.electrum_config["host"] = "electrum.example"
        assert second.electrum_config["host"] == "127.0.0.1"

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"state_entity_endpoint": "http://se.example", "poll_interval": 3}))
        config = Config.from_file(path)
        assert config.state_entity_endpoint == "http://se.example"
        assert config.poll_interval == 3
        assert config.swap_conductor_endpoint == "http://127.0.0.1:8000"

    def test_from_missing_file(self, tmp_path):
        assert Config.from_file(tmp_path / "missing.json") == Config()

    def test_dict_round_trip(self):
        config = Config(network="regtest", crypto_engine="engine.module:Engine")
        assert Config.from_dict(config.to_dict()) == config


class TestKeyChain:
    def test_deterministic(self):
        first = KeyChain(MNEMONIC)
        second = KeyChain(MNEMONIC)
        assert first.next_proof_key() == second.next_proof_key()
        assert first.next_proof_key() != KeyChain(MNEMONIC).next_proof_key()

    def test_derive_own_addresses_only(self):
        chain = KeyChain(MNEMONIC)
        proof_key, priv = chain.next_proof_key()
        assert chain.derive_for_proof_key(proof_key) == priv
        assert chain.public_key_for_address(chain.next_chain_address()) is not None
        assert chain.derive("tb1qunknown") is None
        assert chain.k == 2

    def test_invalid_mnemonic(self):
        with pytest.raises(ValueError, match="Invalid mnemonic"):
            KeyChain("not a real mnemonic")

    def test_dict_round_trip(self):
        chain = KeyChain(MNEMONIC)
        proof_key, priv = chain.next_proof_key()
        restored = KeyChain.from_dict(MNEMONIC, "testnet", chain.to_dict())
        assert restored.k == 1
        assert restored.derive_for_proof_key(proof_key) == priv


class TestWalletStore:
    def test_save_and_load(self, tmp_path):
        store = WalletStore(tmp_path / "wallet.json")
        assert not store.exists()
        store.save({"mnemonic": "words"})
        assert store.exists()
        assert store.load() == {"mnemonic": "words"}

        document = json.loads((tmp_path / "wallet.json").read_text())
        assert document["version"] == STORE_VERSION
        assert "updated_ts" in document
        # No temp files left behind
        assert [p.name for p in tmp_path.iterdir()] == ["wallet.json"]

    def test_load_missing(self, tmp_path):
        with pytest.raises(NotFound):
            WalletStore(tmp_path / "wallet.json").load()

    def test_clear(self, tmp_path):
        store = WalletStore(tmp_path / "wallet.json")
        store.save({"mnemonic": "words"})
        store.clear()
        assert not store.exists()
        with pytest.raises(NotFound):
            store.load()

    def test_unsupported_version(self, tmp_path):
        path = tmp_path / "wallet.json"
        path.write_text(json.dumps({"version": 99, "wallet": {"a": 1}}))
        with pytest.raises(ValueError):
            WalletStore(path).load()


class TestMnemonicEncryption:
    def test_plain(self):
        assert encrypt_mnemonic(MNEMONIC, None) == MNEMONIC
        assert decrypt_mnemonic(MNEMONIC, None) == MNEMONIC

    def test_encrypted(self):
        stored = encrypt_mnemonic(MNEMONIC, "pw")
        assert isinstance(stored, dict)
        assert decrypt_mnemonic(stored, "pw") == MNEMONIC
        with pytest.raises(ValueError):
            decrypt_mnemonic(stored, None)


@pytest_asyncio.fixture
async def stored_wallet(tmp_path, config, engine, client, electrum):
    store = WalletStore(tmp_path / "wallet.json")
    wallet = Wallet.from_mnemonic(MNEMONIC, config, engine, http_client=client, conductor=client,
                                  electrum_client=electrum, store=store, password="pw")
    yield wallet
    await wallet.close()


class TestWalletPersistence:
    @pytest.mark.asyncio
    async def test_save_load(self, stored_wallet, client, engine):
        coin = add_available_coin(stored_wallet, client)
        await stored_wallet.swap_init(coin.shared_key_id, 3)
        stored_wallet.set_block_height(1500)
        stored_wallet.save()

        raw = json.loads(stored_wallet.store.path.read_text())
        assert raw["wallet"]["mnemonic"] != MNEMONIC

        loaded = Wallet.load(stored_wallet.store, engine, password="pw", http_client=client,
                             conductor=client, electrum_client=MockElectrumClient())
        try:
            assert loaded.mnemonic == MNEMONIC
            assert loaded.block_height == 1500
            assert loaded.statecoins.get_coin(coin.shared_key_id) == \
                stored_wallet.statecoins.get_coin(coin.shared_key_id)
            assert loaded.keychain.to_dict() == stored_wallet.keychain.to_dict()
            assert loaded.get_activity_log(10) == stored_wallet.get_activity_log(10)
            # Proof key still derivable, so the coin can still be spent
            assert loaded.keychain.derive_for_proof_key(coin.proof_key) is not None
        finally:
            await loaded.close()

    @pytest.mark.asyncio
    async def test_load_wrong_password(self, stored_wallet, engine):
        stored_wallet.save()
        with pytest.raises(ValueError):
            Wallet.load(stored_wallet.store, engine, password="wrong")

    @pytest.mark.asyncio
    async def test_clear_save(self, stored_wallet, engine):
        stored_wallet.save()
        stored_wallet.clear_save()
        with pytest.raises(NotFound):
            Wallet.load(stored_wallet.store, engine, password="pw")


class TestWalletKeys:
    @pytest.mark.asyncio
    async def test_confirm_mnemonic_knowledge(self, wallet):
        words = MNEMONIC.split(" ")
        assert wallet.confirm_mnemonic_knowledge([{"pos": 0, "word": words[0]}, {"pos": 11, "word": words[11]}])
        assert not wallet.confirm_mnemonic_knowledge([{"pos": 0, "word": words[1]}])
        assert not wallet.confirm_mnemonic_knowledge([{"pos": 12, "word": "ghost"}])

    @pytest.mark.asyncio
    async def test_gen_se_address(self, wallet):
        first = wallet.gen_se_address()
        assert first.startswith("sc1")
        assert wallet.gen_se_address() != first

    @pytest.mark.asyncio
    async def test_backup_tx_data(self, wallet, client):
        coin = add_available_coin(wallet, client)
        data = wallet.get_coin_backup_tx_data(coin.shared_key_id)
        assert data["tx_backup_hex"] == coin.tx_backup
        assert data["priv_key_hex"] == wallet.keychain.derive_for_proof_key(coin.proof_key).hex()
        assert data["output_value"] == coin.value - 600

    @pytest.mark.asyncio
    async def test_backup_tx_data_requires_available(self, wallet, client):
        coin = add_available_coin(wallet, client)
        await wallet.swap_init(coin.shared_key_id, 3)
        with pytest.raises(InvalidState):
            wallet.get_coin_backup_tx_data(coin.shared_key_id)

    @pytest.mark.asyncio
    async def test_block_height_expires_coins(self, wallet, client):
        coin = add_available_coin(wallet, client)
        wallet.set_block_height(30000)
        assert wallet.statecoins.get_coin(coin.shared_key_id).status.value == "EXPIRED"
