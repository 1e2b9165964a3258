"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for SQLite-based model persistence.
"""

import os
import sqlite3

import pytest

from nnengine.matrix import Matrix
from nnengine.network import Network, Sample
from nnengine.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    get_network_metadata,
    delete_old_networks,
    ModelDatabase
)


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a simple 3-layer network for testing."""
    return Network([3, 4, 2], 'tanh', rng=3)


@pytest.fixture
def trained_network(simple_network):
    """Create a simple network with some training applied."""
    training_data = []
    for i in range(10):
        x = Matrix.from_column([i / 10, (i % 3) / 3, 1.0])
        y = Matrix.from_column([1.0, 0.0] if i % 2 else [0.0, 1.0])
        training_data.append(Sample(x, y))

    simple_network.train(training_data, epochs=1, batch_size=5, learning_rate=0.1)
    return simple_network


def age_network(temp_db_dir, network_id, modifier):
    """Move a network's created_at into the past, e.g. ``'-3 days'``."""
    conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
    cursor = conn.cursor()
    cursor.execute('''
        UPDATE networks
        SET created_at = datetime('now', ?)
        WHERE network_id = ?
    ''', (modifier, network_id))
    conn.commit()
    conn.close()


@pytest.mark.unit
class TestModelPersistence:
    """Test basic model persistence operations."""

    def test_save_network_creates_database(self, simple_network, temp_db_dir):
        success = save_network(simple_network, "test_network_1",
                               model_dir=temp_db_dir, trained=False)

        assert success is True
        assert os.path.exists(f"{temp_db_dir}/networks.db")

    def test_save_network_with_metadata(self, trained_network, temp_db_dir):
        network_id = "trained_network_1"

        success = save_network(trained_network, network_id, model_dir=temp_db_dir,
                               trained=True, accuracy=0.85)
        assert success is True

        metadata = get_network_metadata(network_id, temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == network_id
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85
        assert metadata['architecture'] == [3, 4, 2]
        assert metadata['hidden_activation'] == 'tanh'

    def test_save_rejects_invalid_accuracy(self, simple_network, temp_db_dir):
        assert save_network(simple_network, "bad", model_dir=temp_db_dir,
                            accuracy=1.5) is False
        assert load_network("bad", temp_db_dir) is None

    def test_save_rejects_empty_id(self, simple_network, temp_db_dir):
        assert save_network(simple_network, "", model_dir=temp_db_dir) is False

    def test_load_network_returns_network(self, simple_network, temp_db_dir):
        save_network(simple_network, "test_network_2", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_2", temp_db_dir)

        assert isinstance(loaded_network, Network)
        assert loaded_network.layer_sizes == simple_network.layer_sizes
        assert loaded_network.hidden_activation == 'tanh'

    def test_load_nonexistent_network(self, temp_db_dir):
        assert load_network("nonexistent", temp_db_dir) is None

    def test_load_preserves_parameters(self, trained_network, temp_db_dir):
        save_network(trained_network, "test_network_3", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_3", temp_db_dir)

        assert loaded_network.weights == trained_network.weights
        assert loaded_network.biases == trained_network.biases

    def test_load_corrupt_snapshot_returns_none(self, simple_network, temp_db_dir):
        save_network(simple_network, "corrupt", model_dir=temp_db_dir)
        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        conn.execute("UPDATE networks SET snapshot = '{}' WHERE network_id = 'corrupt'")
        conn.commit()
        conn.close()

        assert load_network("corrupt", temp_db_dir) is None

    def test_list_saved_networks_empty(self, temp_db_dir):
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        save_network(simple_network, "net1", model_dir=temp_db_dir, trained=True, accuracy=0.9)
        save_network(simple_network, "net2", model_dir=temp_db_dir, trained=False)

        networks = list_saved_networks(temp_db_dir)

        assert len(networks) == 2
        assert {net['network_id'] for net in networks} == {"net1", "net2"}

    def test_list_saved_networks_includes_metadata(self, simple_network, temp_db_dir):
        save_network(simple_network, "metadata_test", model_dir=temp_db_dir,
                     trained=True, accuracy=0.75)

        network = list_saved_networks(temp_db_dir)[0]

        assert network['network_id'] == "metadata_test"
        assert network['architecture'] == [3, 4, 2]
        assert network['trained'] is True
        assert network['accuracy'] == 0.75
        assert network['weights_shape'] == [[4, 3], [2, 4]]
        assert network['biases_shape'] == [[4, 1], [2, 1]]
        assert 'created_at' in network
        assert 'updated_at' in network

    def test_delete_network_success(self, simple_network, temp_db_dir):
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        ModelDatabase(db_path=f'{temp_db_dir}/networks.db')
        assert delete_network("nonexistent", temp_db_dir) is False

    def test_update_network(self, simple_network, temp_db_dir):
        """Saving with the same ID updates the stored network."""
        save_network(simple_network, "update_test", model_dir=temp_db_dir, trained=False)
        assert get_network_metadata("update_test", temp_db_dir)['trained'] is False

        save_network(simple_network, "update_test", model_dir=temp_db_dir,
                     trained=True, accuracy=0.88)

        metadata = get_network_metadata("update_test", temp_db_dir)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.88
        assert len(list_saved_networks(temp_db_dir)) == 1

    def test_update_keeps_created_at(self, simple_network, temp_db_dir):
        save_network(simple_network, "aged", model_dir=temp_db_dir)
        age_network(temp_db_dir, "aged", '-1 day')
        created_at = get_network_metadata("aged", temp_db_dir)['created_at']

        save_network(simple_network, "aged", model_dir=temp_db_dir)
        assert get_network_metadata("aged", temp_db_dir)['created_at'] == created_at


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_train_cycle(self, simple_network, temp_db_dir):
        """Complete cycle: save, load, train, save again."""
        save_network(simple_network, "cycle_test", model_dir=temp_db_dir, trained=False)
        loaded_network = load_network("cycle_test", temp_db_dir)

        training_data = [
            Sample(Matrix.from_column([i, 1 - i, 0.5]),
                   Matrix.from_column([i, 1 - i]))
            for i in (0, 1) * 5
        ]
        loaded_network.train(training_data, epochs=1, batch_size=5, learning_rate=0.1)

        save_network(loaded_network, "cycle_test", model_dir=temp_db_dir,
                     trained=True, accuracy=0.85)

        final_network = load_network("cycle_test", temp_db_dir)
        metadata = get_network_metadata("cycle_test", temp_db_dir)

        assert final_network.weights == loaded_network.weights
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85

    def test_multiple_networks_coexist(self, temp_db_dir):
        networks_to_create = [
            ([784, 30, 10], 'sigmoid', "mnist_network"),
            ([3, 4, 2], 'relu', "simple_network"),
            ([10, 20, 20, 10], 'tanh', "deep_network")
        ]

        for architecture, activation, network_id in networks_to_create:
            save_network(Network(architecture, activation), network_id, model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(networks_to_create)

        for architecture, activation, network_id in networks_to_create:
            loaded = load_network(network_id, temp_db_dir)
            assert loaded.layer_sizes == architecture
            assert loaded.hidden_activation == activation

    def test_default_model_dir_from_environment(self, simple_network, tmp_path, monkeypatch):
        monkeypatch.setenv('MODEL_DIR', str(tmp_path / 'env_models'))

        assert save_network(simple_network, "env_network") is True
        assert os.path.exists(tmp_path / 'env_models' / 'networks.db')
        assert load_network("env_network") is not None


class TestDeleteOldNetworks:
    """Tests for cleanup of old networks."""

    def test_delete_old_networks_basic(self, simple_network, temp_db_dir):
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(temp_db_dir, "test_network", '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 1
        assert load_network("test_network", temp_db_dir) is None

    def test_delete_old_networks_preserves_recent(self, simple_network, temp_db_dir):
        save_network(simple_network, "recent_network", model_dir=temp_db_dir)

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0
        assert load_network("recent_network", temp_db_dir) is not None

    def test_delete_old_networks_mixed_ages(self, simple_network, temp_db_dir):
        old_ids = ["old_1", "old_2"]
        recent_ids = ["recent_1", "recent_2"]

        for network_id in old_ids + recent_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)
        for network_id in old_ids:
            age_network(temp_db_dir, network_id, '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == len(old_ids)
        for network_id in old_ids:
            assert load_network(network_id, temp_db_dir) is None
        for network_id in recent_ids:
            assert load_network(network_id, temp_db_dir) is not None

    def test_delete_old_networks_custom_days(self, simple_network, temp_db_dir):
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(temp_db_dir, "test_network", '-5 days')

        assert delete_old_networks(days=7, model_dir=temp_db_dir) == 0
        assert delete_old_networks(days=3, model_dir=temp_db_dir) == 1

    def test_delete_old_networks_empty_db(self, temp_db_dir):
        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0

    def test_delete_old_networks_negative_days(self, temp_db_dir):
        with pytest.raises(ValueError) as exc_info:
            delete_old_networks(days=-1, model_dir=temp_db_dir)
        assert "non-negative" in str(exc_info.value)

    def test_delete_old_networks_zero_days(self, simple_network, temp_db_dir):
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(temp_db_dir, "test_network", '-1 hour')

        assert delete_old_networks(days=0, model_dir=temp_db_dir) == 1

    def test_model_database_delete_old_networks_method(self, temp_db_dir):
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "networks.db"))
        db.save_network_to_db(Network([3, 4, 2]), "test_network", trained=False)
        age_network(temp_db_dir, "test_network", '-3 days')

        assert db.delete_old_networks_from_db(days=2) == 1
        assert db.load_network_from_db("test_network") is None
