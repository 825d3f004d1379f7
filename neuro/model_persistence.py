"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-based persistence for neural network models.

Networks are stored in the binary parameter format of :mod:`neuro.codec`,
next to queryable metadata (architecture, training status, accuracy).
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager

from neuro.config import get_settings
from neuro.errors import NetworkError
from neuro.network import Network

# Configure module logger
logger = logging.getLogger(__name__)

DB_FILENAME = 'networks.db'


class ModelDatabase:
    """
    Manages SQLite database for neural network model persistence.

    The database stores:
    - Network metadata (architecture, training status, accuracy)
    - Encoded network parameters as binary blobs
    """

    def __init__(self, db_path: str = os.path.join('models', DB_FILENAME)):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    network_data BLOB NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_trained
                ON networks(trained)
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database.

        Saving under an existing id replaces the parameters and metadata
        but keeps the original creation time.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            accuracy: Test accuracy (0.0 to 1.0)

        Returns:
            bool: True if successful

        Raises:
            ValueError: If accuracy is out of valid range
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        network_data = network.to_bytes()
        architecture_json = json.dumps(network.sizes)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO networks
                (network_id, architecture, network_data, trained, accuracy)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                architecture_json,
                sqlite3.Binary(network_data),
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.sizes}, trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Load a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Network or None if not found

        Raises:
            FormatError: If the stored parameters are corrupt
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = Network.from_bytes(bytes(row['network_data']))
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata.

        Returns:
            List of network metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')
            rows = cursor.fetchall()

        networks = []
        for row in rows:
            metadata = _row_to_metadata(row)
            architecture = metadata['architecture']

            # Parameter shapes follow from the architecture alone
            metadata['weights_shape'] = [
                [architecture[i + 1], architecture[i]]
                for i in range(len(architecture) - 1)
            ]
            metadata['biases_shape'] = [
                [architecture[i + 1], 1]
                for i in range(len(architecture) - 1)
            ]
            networks.append(metadata)

        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(
                f"Could not delete network '{network_id}': not found"
            )
        return deleted

    def delete_old_networks_from_db(self, days: float) -> int:
        """
        Delete networks created more than ``days`` days ago.

        Args:
            days: Age threshold in days, 0 deletes everything created
                before now

        Returns:
            int: Number of deleted networks

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM networks
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        logger.info(
            f"Deleted {deleted} network(s) older than {days} day(s)"
        )
        return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without decoding the parameters.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))
            row = cursor.fetchone()

        if row is None:
            logger.warning(
                f"Metadata for network '{network_id}' not found"
            )
            return None

        return _row_to_metadata(row)


def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        'network_id': row['network_id'],
        'architecture': json.loads(row['architecture']),
        'trained': bool(row['trained']),
        'accuracy': row['accuracy'],
        'created_at': row['created_at'],
        'updated_at': row['updated_at']
    }


# One database instance per model directory
_databases: Dict[str, ModelDatabase] = {}


def _get_db(model_dir: Optional[str] = None) -> ModelDatabase:
    """
    Get or create the database instance for a model directory.

    Args:
        model_dir: Directory of the database file, defaults to the
            configured model directory

    Returns:
        ModelDatabase: The database for that directory
    """
    model_dir = model_dir or get_settings().model_dir
    db = _databases.get(model_dir)
    if db is None:
        db = ModelDatabase(db_path=os.path.join(model_dir, DB_FILENAME))
        _databases[model_dir] = db
    return db


def _valid_id(network_id: Any) -> bool:
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False
    return True


def save_network(
    network: Network,
    network_id: str,
    model_dir: Optional[str] = None,
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a neural network to the SQLite database.

    Args:
        network: The network to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        trained: Boolean indicating if the network has been trained
        accuracy: The accuracy of the trained network (0.0 to 1.0)

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network([784, 30, 10])
        >>> save_network(net, "my_network", trained=False)
        True
    """
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).save_network_to_db(
            network, network_id, trained, accuracy
        )
    except NetworkError as e:
        logger.error(f"Encoding error saving network '{network_id}': {e}")
        return False
    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(
    network_id: str,
    model_dir: Optional[str] = None
) -> Optional[Network]:
    """
    Load a neural network from the SQLite database.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored

    Returns:
        The loaded network or None if not found or unreadable

    Example:
        >>> net = load_network("my_network")
        >>> if net:
        ...     print(f"Loaded network with {net.num_layers} layers")
    """
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).load_network_from_db(network_id)
    except NetworkError as e:
        logger.error(
            f"Decoding error loading network '{network_id}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading network '{network_id}': {e}"
        )
        return None


def list_saved_networks(
    model_dir: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: A list of metadata dictionaries for each saved network

    Example:
        >>> for net in list_saved_networks():
        ...     print(f"{net['network_id']}: {net['architecture']}")
    """
    try:
        return _get_db(model_dir).list_networks_from_db()
    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []


def delete_network(
    network_id: str,
    model_dir: Optional[str] = None
) -> bool:
    """
    Delete a saved network from the database.

    Args:
        network_id: The unique identifier of the network to delete
        model_dir: Directory where the database is stored

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def delete_old_networks(
    days: float = 2,
    model_dir: Optional[str] = None
) -> int:
    """
    Delete saved networks older than the given number of days.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number of deleted networks, or -1 on database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_networks_from_db(days)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1


def get_network_metadata(
    network_id: str,
    model_dir: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without loading its parameters.

    Args:
        network_id: The unique identifier of the network
        model_dir: Directory where the database is stored

    Returns:
        dict: Network metadata or None if not found

    Example:
        >>> metadata = get_network_metadata("my_network")
        >>> if metadata:
        ...     print(f"Accuracy: {metadata['accuracy']}")
    """
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None
