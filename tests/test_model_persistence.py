"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for SQLite-based model persistence.
"""

import os
import sqlite3

import numpy as np
import pytest

from neuro.network import Network
from neuro.model_persistence import (
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


def age_network(db_dir, network_id, modifier):
    """Move a network's creation time into the past, e.g. '-3 days'."""
    conn = sqlite3.connect(os.path.join(db_dir, "networks.db"))
    conn.execute('''
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
        """Test that saving a network creates the database file."""
        success = save_network(
            simple_network,
            "test_network_1",
            model_dir=temp_db_dir,
            trained=False
        )

        assert success is True
        assert os.path.exists(f"{temp_db_dir}/networks.db")

    def test_save_network_with_metadata(self, trained_network, temp_db_dir):
        """Test that network metadata is saved correctly."""
        network_id = "trained_network_1"

        save_network(
            trained_network,
            network_id,
            model_dir=temp_db_dir,
            trained=True,
            accuracy=0.85
        )

        metadata = get_network_metadata(network_id, temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == network_id
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85
        assert metadata['architecture'] == [3, 4, 2]

    def test_blob_is_binary_parameter_format(self, trained_network, temp_db_dir):
        """Test the stored blob is exactly the network's encoding."""
        save_network(trained_network, "blob_test", model_dir=temp_db_dir)

        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        (blob,) = conn.execute(
            'SELECT network_data FROM networks WHERE network_id = ?',
            ("blob_test",)
        ).fetchone()
        conn.close()

        assert bytes(blob) == trained_network.to_bytes()

    def test_load_network_returns_network(self, simple_network, temp_db_dir):
        """Test that loading a network returns a valid Network object."""
        save_network(simple_network, "test_network_2", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_2", temp_db_dir)

        assert isinstance(loaded_network, Network)
        assert loaded_network.sizes == simple_network.sizes

    def test_load_nonexistent_network(self, temp_db_dir):
        """Test that loading a non-existent network returns None."""
        assert load_network("nonexistent", temp_db_dir) is None

    def test_load_preserves_parameters(self, trained_network, temp_db_dir):
        """Test that saved weights and biases come back bit for bit."""
        save_network(trained_network, "test_network_3", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_3", temp_db_dir)

        for original_w, loaded_w in zip(trained_network.weights, loaded_network.weights):
            assert np.array_equal(original_w, loaded_w)
        for original_b, loaded_b in zip(trained_network.biases, loaded_network.biases):
            assert np.array_equal(original_b, loaded_b)

    def test_load_corrupt_network(self, simple_network, temp_db_dir):
        """Test that a truncated blob is reported as missing, not raised."""
        save_network(simple_network, "corrupt", model_dir=temp_db_dir)

        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        conn.execute(
            'UPDATE networks SET network_data = ? WHERE network_id = ?',
            (sqlite3.Binary(simple_network.to_bytes()[:-3]), "corrupt")
        )
        conn.commit()
        conn.close()

        assert load_network("corrupt", temp_db_dir) is None

    def test_list_saved_networks_empty(self, temp_db_dir):
        """Test listing networks when database is empty."""
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        """Test that listing networks returns correct metadata."""
        save_network(simple_network, "net1", model_dir=temp_db_dir, trained=True, accuracy=0.9)
        save_network(simple_network, "net2", model_dir=temp_db_dir, trained=False)

        networks = list_saved_networks(temp_db_dir)

        assert len(networks) == 2
        assert {net['network_id'] for net in networks} == {"net1", "net2"}

    def test_list_saved_networks_includes_metadata(self, simple_network, temp_db_dir):
        """Test that listed networks include all expected metadata fields."""
        save_network(
            simple_network,
            "metadata_test",
            model_dir=temp_db_dir,
            trained=True,
            accuracy=0.75
        )

        network = list_saved_networks(temp_db_dir)[0]

        assert network['network_id'] == "metadata_test"
        assert network['architecture'] == [3, 4, 2]
        assert network['trained'] is True
        assert network['accuracy'] == 0.75
        assert 'created_at' in network
        assert 'updated_at' in network
        assert network['weights_shape'] == [[4, 3], [2, 4]]
        assert network['biases_shape'] == [[4, 1], [2, 1]]

    def test_delete_network_success(self, simple_network, temp_db_dir):
        """Test successful network deletion."""
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        """Test that deleting a non-existent network returns False."""
        assert delete_network("nonexistent", temp_db_dir) is False

    def test_save_untrained_network(self, simple_network, temp_db_dir):
        """Test saving a network that hasn't been trained."""
        save_network(
            simple_network,
            "untrained_test",
            model_dir=temp_db_dir,
            trained=False,
            accuracy=None
        )

        metadata = get_network_metadata("untrained_test", temp_db_dir)
        assert metadata['trained'] is False
        assert metadata['accuracy'] is None

    def test_update_network(self, simple_network, temp_db_dir):
        """Test that saving a network with the same ID updates it."""
        network_id = "update_test"

        save_network(simple_network, network_id, model_dir=temp_db_dir, trained=False)
        metadata1 = get_network_metadata(network_id, temp_db_dir)
        assert metadata1['trained'] is False

        save_network(
            simple_network,
            network_id,
            model_dir=temp_db_dir,
            trained=True,
            accuracy=0.88
        )

        metadata2 = get_network_metadata(network_id, temp_db_dir)
        assert metadata2['trained'] is True
        assert metadata2['accuracy'] == 0.88
        assert metadata2['created_at'] == metadata1['created_at']
        assert len(list_saved_networks(temp_db_dir)) == 1

    @pytest.mark.parametrize('accuracy', [-0.1, 1.5])
    def test_save_rejects_invalid_accuracy(self, simple_network, temp_db_dir, accuracy):
        assert save_network(
            simple_network, "bad_accuracy", model_dir=temp_db_dir, accuracy=accuracy
        ) is False
        assert get_network_metadata("bad_accuracy", temp_db_dir) is None

    @pytest.mark.parametrize('network_id', ["", None, 42])
    def test_invalid_network_id(self, simple_network, temp_db_dir, network_id):
        assert save_network(simple_network, network_id, model_dir=temp_db_dir) is False
        assert load_network(network_id, temp_db_dir) is None
        assert delete_network(network_id, temp_db_dir) is False
        assert get_network_metadata(network_id, temp_db_dir) is None


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_train_cycle(self, simple_network, training_samples, temp_db_dir):
        """Test complete cycle: save, load, train, save again."""
        network_id = "cycle_test"

        save_network(simple_network, network_id, model_dir=temp_db_dir, trained=False)
        loaded_network = load_network(network_id, temp_db_dir)

        loaded_network.SGD(training_samples, epochs=1, mini_batch_size=5, eta=0.1)

        save_network(
            loaded_network,
            network_id,
            model_dir=temp_db_dir,
            trained=True,
            accuracy=0.85
        )

        final_network = load_network(network_id, temp_db_dir)
        metadata = get_network_metadata(network_id, temp_db_dir)

        assert final_network.to_bytes() == loaded_network.to_bytes()
        assert final_network.to_bytes() != simple_network.to_bytes()
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85

    def test_multiple_networks_coexist(self, temp_db_dir):
        """Test that multiple networks can coexist in the database."""
        networks_to_create = [
            ([784, 30, 10], "mnist_network"),
            ([3, 4, 2], "simple_network"),
            ([10, 20, 20, 10], "deep_network")
        ]

        for architecture, network_id in networks_to_create:
            save_network(Network(architecture), network_id, model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(networks_to_create)

        for architecture, network_id in networks_to_create:
            loaded = load_network(network_id, temp_db_dir)
            assert loaded is not None
            assert loaded.sizes == architecture

    def test_database_instance_directly(self, simple_network, temp_db_dir):
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "direct.db"))

        assert db.save_network_to_db(simple_network, "direct", trained=False) is True
        assert db.load_network_from_db("direct").sizes == [3, 4, 2]
        assert db.delete_network_from_db("direct") is True
        assert db.load_network_from_db("direct") is None


class TestDeleteOldNetworks:
    """Tests for automatic cleanup of old networks."""

    def test_delete_old_networks_basic(self, simple_network, temp_db_dir):
        save_network(simple_network, "old", model_dir=temp_db_dir)
        age_network(temp_db_dir, "old", '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 1
        assert load_network("old", temp_db_dir) is None

    def test_delete_old_networks_preserves_recent(self, simple_network, temp_db_dir):
        save_network(simple_network, "recent", model_dir=temp_db_dir)

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0
        assert load_network("recent", temp_db_dir) is not None

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
        save_network(simple_network, "aged", model_dir=temp_db_dir)
        age_network(temp_db_dir, "aged", '-5 days')

        assert delete_old_networks(days=7, model_dir=temp_db_dir) == 0
        assert delete_old_networks(days=3, model_dir=temp_db_dir) == 1

    def test_delete_old_networks_zero_days(self, simple_network, temp_db_dir):
        save_network(simple_network, "hour_old", model_dir=temp_db_dir)
        age_network(temp_db_dir, "hour_old", '-1 hour')

        assert delete_old_networks(days=0, model_dir=temp_db_dir) == 1

    def test_delete_old_networks_empty_db(self, temp_db_dir):
        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0

    def test_delete_old_networks_negative_days(self, temp_db_dir):
        with pytest.raises(ValueError) as exc_info:
            delete_old_networks(days=-1, model_dir=temp_db_dir)
        assert "non-negative" in str(exc_info.value)
