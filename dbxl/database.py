# dbxl/database.py
"""
Database connection wrapper that provides a uniform interface
to different database adapters, and the datasource bootstrap that turns
an export configuration's ``datasource`` block into a connection.
"""

import importlib
import importlib.util
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, unquote

from .cursors import Cursor

logger = logging.getLogger(__name__)


DRIVERS = {
    # PostgreSQL Drivers
    'psycopg2': {
        'database_type': 'postgres',
        'priority': 11,
        'param_map': {'database': 'dbname'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'sslmode', 'connect_timeout', 'application_name'},
        'connection_method': 'connection_string',
        'default_port': 5432,
    },
    'psycopg': {  # psycopg3
        'database_type': 'postgres',
        'priority': 12,
        'param_map': {'database': 'dbname'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'sslmode', 'connect_timeout', 'application_name'},
        'connection_method': 'connection_string',
        'default_port': 5432,
    },

    # Oracle Drivers
    'oracledb': {
        'database_type': 'oracle',
        'priority': 11,
        'param_map': {'database': 'service_name'},
        'required_params': [{'dsn', 'user'}, {'host', 'port', 'database', 'user'}, {'host', 'port', 'sid', 'user'}],
        'optional_params': {'password', 'sid', 'config_dir', 'wallet_location', 'wallet_password'},
        'connection_method': 'dsn',
        'default_port': 1521
    },
    'cx_Oracle': {
        'database_type': 'oracle',
        'priority': 12,
        'param_map': {'database': 'service_name'},
        'required_params': [{'dsn', 'user'}, {'host', 'port', 'database', 'user'}, {'host', 'port', 'sid', 'user'}],
        'optional_params': {'password', 'sid', 'encoding', 'nencoding'},
        'connection_method': 'dsn',
        'default_port': 1521
    },

    # MySQL Drivers
    'pymysql': {
        'database_type': 'mysql',
        'priority': 11,
        'param_map': {},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'charset', 'connect_timeout', 'read_timeout'},
        'connection_method': 'kwargs',
        'default_port': 3306
    },
    'mysql.connector': {
        'database_type': 'mysql',
        'priority': 12,
        'param_map': {},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'charset', 'collation', 'time_zone', 'connection_timeout'},
        'connection_method': 'kwargs',
        'default_port': 3306
    },

    # SQL Server Drivers
    'pymssql': {
        'database_type': 'sqlserver',
        'priority': 11,
        'param_map': {'host': 'server'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'password', 'port', 'timeout', 'login_timeout', 'charset', 'appname'},
        'connection_method': 'kwargs',
        'default_port': 1433
    },
    'pyodbc': {
        'database_type': 'sqlserver',
        'priority': 12,
        'param_map': {'database': 'DATABASE', 'user': 'UID', 'password': 'PWD'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'password', 'port', 'encrypt', 'trustservercertificate'},
        'connection_method': 'odbc_string',
        'odbc_driver_name': 'ODBC Driver 17 for SQL Server',
        'default_port': 1433
    },

    # SQLite Driver
    'sqlite3': {
        'database_type': 'sqlite',
        'priority': 1,
        'param_map': {},
        'required_params': [{'database'}],
        'optional_params': {'timeout', 'detect_types', 'isolation_level', 'uri'},
        'connection_method': 'kwargs'
    }
}

# JDBC driver classes found in exporter configurations
JDBC_DRIVER_CLASSES = {
    'oracle.jdbc.driver.OracleDriver': 'oracle',
    'oracle.jdbc.OracleDriver': 'oracle',
    'org.postgresql.Driver': 'postgres',
    'com.mysql.jdbc.Driver': 'mysql',
    'com.mysql.cj.jdbc.Driver': 'mysql',
    'org.mariadb.jdbc.Driver': 'mysql',
    'com.microsoft.sqlserver.jdbc.SQLServerDriver': 'sqlserver',
    'net.sourceforge.jtds.jdbc.Driver': 'sqlserver',
    'org.sqlite.JDBC': 'sqlite',
}

# JDBC sub-protocol -> database type
JDBC_PROTOCOLS = {
    'postgresql': 'postgres',
    'postgres': 'postgres',
    'oracle': 'oracle',
    'mysql': 'mysql',
    'mariadb': 'mysql',
    'sqlserver': 'sqlserver',
    'jtds': 'sqlserver',
    'sqlite': 'sqlite',
}

_HOST_PORT_DB = re.compile(r'^//(?P<host>[^:/;?]+)(?::(?P<port>\d+))?(?:/(?P<database>[^;?]*))?(?P<rest>.*)$')
_ORACLE_THIN = re.compile(r'^thin:@(?P<target>.+)$')
_ORACLE_SERVICE = re.compile(r'^//(?P<host>[^:/]+)(?::(?P<port>\d+))?/(?P<database>.+)$')
_ORACLE_SID = re.compile(r'^(?P<host>[^:/]+):(?P<port>\d+):(?P<sid>.+)$')


def get_drivers_for_database(db_type: str, valid_only: bool = True) -> List[str]:
    """
    Gets a list of drivers available for the specified database type, preferred first.

    Parameters:
        db_type (str): The type of database for which to retrieve drivers.
        valid_only (bool): Only include drivers that are importable (default is True).
    """
    available_drivers = []
    for driver_name, info in DRIVERS.items():
        if info['database_type'] != db_type:
            continue
        if valid_only and importlib.util.find_spec(driver_name.split('.')[0]) is None:
            continue
        available_drivers.append(driver_name)
    available_drivers.sort(key=lambda d: DRIVERS[d]['priority'])
    return available_drivers


def get_supported_db_types() -> set:
    """Get all supported database types."""
    return {info['database_type'] for info in DRIVERS.values()}


def validate_connection_params(driver_name: str, **params) -> dict:
    """
    Validate connection parameters against driver requirements.

    Args:
        driver_name: Name of the database driver
        **params: Connection parameters

    Returns:
        Dict of parameters renamed for the driver, with unknown parameters removed

    Raises:
        ValueError: If required parameters are missing
    """
    if driver_name not in DRIVERS:
        raise ValueError(f"Unknown driver: {driver_name}")

    driver_info = DRIVERS[driver_name]
    params = {key: val for key, val in params.items() if val is not None}

    if 'port' not in params and driver_info.get('default_port'):
        params['port'] = driver_info['default_port']

    if not any(required_set.issubset(params.keys()) for required_set in driver_info['required_params']):
        raise ValueError(f"Missing required parameters for {driver_name}. "
                         f"Need one of: {[sorted(s) for s in driver_info['required_params']]}")

    all_valid_params = set(driver_info.get('optional_params', set()))
    for req_set in driver_info['required_params']:
        all_valid_params.update(req_set)

    param_map = driver_info.get('param_map', {})
    ignored = set(params) - all_valid_params
    if ignored:
        logger.warning(f"Ignoring connection parameters not used by {driver_name}: {sorted(ignored)}")
    return {param_map.get(key, key): value for key, value in params.items() if key in all_valid_params}


def get_connection_string(**kwargs) -> str:
    """ Get connection string from keyword arguments."""
    return " ".join([f"{key}={value}" for key, value in kwargs.items()])


def get_odbc_connection_string(odbc_driver_name: Optional[str] = None, **kwargs) -> str:
    """ Get connection string for ODBC from keyword arguments."""
    host = kwargs.pop('host', 'localhost')
    port = kwargs.pop('port', None)
    params = {'SERVER': f'{host},{port}' if port else host}
    params.update({key.upper(): value for key, value in kwargs.items()})
    prefix = f"DRIVER={{{odbc_driver_name}}};" if odbc_driver_name else ''
    return prefix + ";".join([f"{key}={value}" for key, value in params.items()])


def parse_jdbc_url(url: str) -> Tuple[str, Dict[str, Any]]:
    """
    Split a JDBC URL into a database type and connection parameters.

    Supported forms::

        jdbc:postgresql://host[:port]/database[?param=value...]
        jdbc:mysql://host[:port]/database          (also jdbc:mariadb:)
        jdbc:sqlserver://host[:port];databaseName=db[;...]
        jdbc:jtds:sqlserver://host[:port]/database
        jdbc:oracle:thin:@//host:port/service
        jdbc:oracle:thin:@host:port:SID
        jdbc:oracle:thin:@tns_alias
        jdbc:sqlite:path/to/file.db

    Raises:
        ValueError: If the URL is not a supported JDBC URL
    """
    if not url or not url.lower().startswith('jdbc:'):
        raise ValueError(f"Not a JDBC URL: {url!r}")
    body = url[len('jdbc:'):]
    protocol, _, rest = body.partition(':')
    protocol = protocol.lower()
    if protocol == 'jtds':
        protocol, _, rest = rest.partition(':')
        protocol = 'jtds' if protocol.lower() == 'sqlserver' else protocol.lower()
    db_type = JDBC_PROTOCOLS.get(protocol)
    if db_type is None:
        raise ValueError(f"Unsupported JDBC URL: {url}")

    if db_type == 'sqlite':
        if not rest:
            raise ValueError(f"JDBC URL has no database file: {url}")
        return db_type, {'database': rest}

    if db_type == 'oracle':
        match = _ORACLE_THIN.match(rest)
        if not match:
            raise ValueError(f"Unsupported Oracle JDBC URL (expected thin driver): {url}")
        target = match.group('target')
        service = _ORACLE_SERVICE.match(target)
        if service:
            return db_type, _host_params(service.group('host'), service.group('port'), database=service.group('database'))
        sid = _ORACLE_SID.match(target)
        if sid:
            return db_type, _host_params(sid.group('host'), sid.group('port'), sid=sid.group('sid'))
        return db_type, {'dsn': target}

    match = _HOST_PORT_DB.match(rest)
    if not match:
        raise ValueError(f"Unsupported JDBC URL: {url}")
    params = _host_params(match.group('host'), match.group('port'), database=match.group('database') or None)
    extra = match.group('rest') or ''
    if extra.startswith('?'):
        params.update({key: unquote(val) for key, val in parse_qsl(extra[1:])})
    elif extra.startswith(';'):
        for item in filter(None, extra[1:].split(';')):
            key, _, val = item.partition('=')
            if key.lower() == 'databasename':
                params['database'] = val
            else:
                params[key] = val
    if db_type != 'sqlite' and not params.get('database'):
        raise ValueError(f"JDBC URL has no database name: {url}")
    return db_type, params


def _host_params(host: str, port: Optional[str], **params) -> Dict[str, Any]:
    result = {'host': host}
    if port:
        result['port'] = int(port)
    result.update({key: val for key, val in params.items() if val is not None})
    return result


class Database:
    """
    Database connection wrapper that provides uniform interface
    across different database adapters.
    """

    # Attributes stored locally, others delegated to _connection
    _local_attrs = ['_connection', 'server_type', 'database_name', 'interface']

    def __init__(self, connection, interface, database_name: Optional[str] = None):
        """
        Initialize Database wrapper.

        Args:
            connection: Underlying database connection object
            interface: Database adapter module (psycopg2, oracledb, etc.)
            database_name: Name of the database
        """
        self._connection = connection
        self.interface = interface
        self.database_name = database_name

        # Determine server type from interface name
        interface_name = getattr(interface, '__name__', '')
        if interface_name in DRIVERS:
            self.server_type = DRIVERS[interface_name]['database_type']
        else:
            self.server_type = 'unknown'

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying connection."""
        return getattr(self._connection, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes locally or delegate to connection."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._connection, key, value)

    def __str__(self) -> str:
        """String representation of the database connection."""
        if self.database_name:
            return f'Database({self.database_name}:{self.server_type})'
        else:
            return f'Database({self.server_type})'

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close connection, logging instead of raising close errors."""
        try:
            self.close()
            logger.debug(f"Closed connection {self}")
        except Exception as e:
            logger.error(f"Error closing connection {self}: {e}")

    def cursor(self, **kwargs) -> Cursor:
        """
        Create a cursor.

        Examples:
            cursor = db.cursor()
            cursor = db.cursor(debug=True)
        """
        return Cursor(self, **kwargs)

    @classmethod
    def create(cls, db_type: str, driver: str = None, **kwargs) -> 'Database':
        """
        Factory method to create database connections.

        Args:
            db_type: Database type ('postgres', 'oracle', 'mysql', 'sqlserver', 'sqlite')
            driver: Specific driver module to use; otherwise the preferred importable one
            **kwargs: Connection parameters

        Returns:
            Database instance
        """
        if db_type not in get_supported_db_types():
            raise ValueError(f"Unsupported database type '{db_type}'. "
                             f"Must be one of: {sorted(get_supported_db_types())}")
        db_driver = None
        driver_name = None
        if driver:
            if driver not in DRIVERS:
                raise ValueError(f"Unknown driver: {driver}")
            if DRIVERS[driver]['database_type'] != db_type:
                raise ValueError(f"Driver '{driver}' is not compatible with database type '{db_type}'")
            try:
                db_driver = importlib.import_module(driver)
                driver_name = driver
            except ImportError:
                logger.warning(f"Driver '{driver}' not available, falling back to default")

        if db_driver is None:
            for driver_name in get_drivers_for_database(db_type):
                try:
                    db_driver = importlib.import_module(driver_name)
                    break
                except ImportError:
                    pass

        if db_driver is None:
            raise ImportError(f"No database driver found for database type '{db_type}'")

        logger.debug(f"Loading driver {driver_name} for {db_type}")
        params = validate_connection_params(driver_name, **kwargs)
        driver_conf = DRIVERS[driver_name]
        database_name = kwargs.get('database') or kwargs.get('sid') or kwargs.get('dsn')

        if driver_conf['connection_method'] == 'kwargs':
            connection = db_driver.connect(**params)
        elif driver_conf['connection_method'] == 'connection_string':
            connection = db_driver.connect(get_connection_string(**params))
        elif driver_conf['connection_method'] == 'dsn':
            if 'dsn' not in params:
                host = params.pop('host', 'localhost')
                port = params.pop('port', 1521)
                service_name = params.pop('service_name', None)
                sid = params.pop('sid', None)
                if sid:
                    params['dsn'] = db_driver.makedsn(host, port, sid=sid)
                else:
                    params['dsn'] = db_driver.makedsn(host, port, service_name=service_name)
            connection = db_driver.connect(**params)
        else:
            connection = db_driver.connect(
                get_odbc_connection_string(driver_conf.get('odbc_driver_name'), **params))

        db = cls(connection, db_driver, database_name)
        if db.server_type == 'unknown':
            db.server_type = db_type
        return db


def connect_datasource(datasource) -> Database:
    """
    Open the connection described by an export configuration's ``datasource``.

    The database type comes from ``type``, the ``jdbcUrl`` protocol or the ``className``
    (a JDBC driver class or one of the Python driver names in :data:`DRIVERS`, which also
    pins that driver). Explicit ``host``, ``port`` and ``database`` values override those
    parsed from the URL.

    Args:
        datasource: A :class:`dbxl.config.Datasource`

    Returns:
        Open Database connection
    """
    driver = None
    db_type = datasource.type
    class_name = datasource.class_name
    if class_name in DRIVERS:
        driver = class_name
        db_type = db_type or DRIVERS[class_name]['database_type']
    elif class_name and not db_type:
        db_type = JDBC_DRIVER_CLASSES.get(class_name)

    params: Dict[str, Any] = {}
    if datasource.jdbc_url:
        url_type, params = parse_jdbc_url(datasource.jdbc_url)
        if db_type and db_type != url_type:
            raise ValueError(f"Datasource type '{db_type}' does not match JDBC URL '{datasource.jdbc_url}'")
        db_type = url_type
    if not db_type:
        raise ValueError(f"Cannot determine database type from className '{class_name}'; "
                         f"set 'type' or 'jdbcUrl' in the datasource")

    params.update(datasource.connection_params())
    if datasource.username is not None:
        params['user'] = datasource.username
    if datasource.password is not None:
        params['password'] = datasource.password
    if db_type == 'sqlite':
        params.pop('user', None)
        params.pop('password', None)
        params['database'] = os.path.expanduser(params.get('database', ''))

    info = {key: val for key, val in params.items() if key != 'password'}
    logger.debug(f"Connecting to {db_type} database with {info}")
    return Database.create(db_type, driver=driver, **params)
