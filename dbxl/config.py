# dbxl/config.py
"""
Export configuration documents.

An export document names one datasource and the spreadsheet files to produce from it::

    {
      "datasource": {
        "className": "org.postgresql.Driver",
        "jdbcUrl": "jdbc:postgresql://db.example.com:5432/sales",
        "username": "report",
        "password": "${SALES_DB_PASSWORD}"
      },
      "excelFile": [
        {
          "id": "daily",
          "large": false,
          "fileName": "out/report_##Date##.xlsx",
          "preparationProcedureStatement": "{ call refresh_report() }",
          "worksheet": [
            {"id": "payments", "sqlQuery": "SELECT id, amount FROM payments",
             "workSheetName": "Payments"}
          ]
        }
      ]
    }

JSON (``.json``) and YAML (``.yml``/``.yaml``) documents share the same shape. Two optional
top-level blocks are also read: ``settings`` (merged into :data:`dbxl.defaults.settings`)
and ``formatRules`` (a list of ``{pattern, format}`` evaluated before the built-in rules).

Passwords may be given in clear, as ``${ENV_VAR}`` references, or as an
``encryptedPassword`` produced by :func:`encrypt_password`. Encrypted passwords are
decrypted with the Fernet key from the ``DBXL_ENCRYPTION_KEY`` environment variable or
the system keyring (service ``dbxl``, entry ``encryption_key``).
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .defaults import settings
from .formats import FormatRule

try:
    import yaml
except ImportError:
    raise ImportError("PyYAML is required. Install with: pip install PyYAML")

try:
    from cryptography.fernet import Fernet
    HAS_CRYPTO = True
except ImportError:
    HAS_CRYPTO = False

try:
    import keyring
    HAS_KEYRING = True
except ImportError:
    HAS_KEYRING = False

logger = logging.getLogger(__name__)

KEYRING_SERVICE = 'dbxl'
KEY_ENV_VAR = 'DBXL_ENCRYPTION_KEY'
WORKBOOK_EXTENSIONS = ('.xls', '.xlsx')

_ENV_REF = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')


@dataclass(frozen=True)
class Datasource:
    """
    Connection details of the export's single database.

    Attributes
    ----------
    class_name : str
        JDBC driver class (``org.postgresql.Driver``) or Python driver name (``psycopg2``)
    jdbc_url : str
        JDBC URL; may be empty when ``type`` and ``database`` are given instead
    username, password : str
        Credentials; ``password`` is already decrypted and substituted
    type, host, port, database : optional
        Explicit connection values, overriding those parsed from ``jdbc_url``
    """
    class_name: str = ''
    jdbc_url: str = ''
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    type: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None

    def connection_params(self) -> Dict[str, Any]:
        """Explicit host/port/database values that are set."""
        params = {'host': self.host, 'port': self.port, 'database': self.database}
        return {key: val for key, val in params.items() if val is not None}


@dataclass(frozen=True)
class WorksheetSpec:
    id: str
    sql_query: str
    sheet_name: str


@dataclass(frozen=True)
class OutputFile:
    """
    One spreadsheet file of an export.

    ``file_name`` may contain the date token (``##Date##``), replaced when the file is
    written. ``large`` selects the streaming .xlsx backend.
    """
    id: str
    file_name: str
    worksheets: Tuple[WorksheetSpec, ...]
    large: bool = False
    preparation_statement: Optional[str] = None


@dataclass(frozen=True)
class ExportJob:
    datasource: Datasource
    files: Tuple[OutputFile, ...]
    settings: Dict[str, Any] = field(default_factory=dict)
    format_rules: Tuple[FormatRule, ...] = ()


def load_config(path: Union[str, Path]) -> ExportJob:
    """
    Read and validate an export document.

    Args:
        path: Path of a .json, .yml or .yaml document

    Returns:
        ExportJob

    Raises:
        FileNotFoundError: If the document does not exist
        ValueError: If the document cannot be parsed or is not a valid export document
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() in ('.yml', '.yaml'):
                document = yaml.safe_load(f)
            else:
                document = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e

    job = parse_config(document, source=str(path))
    logger.info(f"Loaded config from {path}: {len(job.files)} output file(s)")
    return job


def parse_config(document: Dict[str, Any], source: str = '<config>') -> ExportJob:
    """Validate an already parsed export document and build the :class:`ExportJob`."""
    if not isinstance(document, dict):
        raise ValueError(f"Invalid config {source}: expected a mapping at the top level")

    datasource = _parse_datasource(_require(document, 'datasource', source, dict), source)

    files = []
    for index, entry in enumerate(_require(document, 'excelFile', source, list)):
        files.append(_parse_output_file(entry, f"{source} excelFile[{index}]"))
    if not files:
        raise ValueError(f"Invalid config {source}: 'excelFile' is empty")

    job_settings = document.get('settings') or {}
    if not isinstance(job_settings, dict):
        raise ValueError(f"Invalid config {source}: 'settings' must be a mapping")

    format_rules = []
    for index, rule in enumerate(document.get('formatRules') or []):
        if not isinstance(rule, dict) or 'pattern' not in rule or 'format' not in rule:
            raise ValueError(f"Invalid config {source}: formatRules[{index}] needs 'pattern' and 'format'")
        format_rules.append(FormatRule.create(str(rule['pattern']), rule['format']))

    return ExportJob(datasource, tuple(files), job_settings, tuple(format_rules))


def _require(mapping: Dict[str, Any], key: str, source: str, kind: type = str) -> Any:
    value = mapping.get(key)
    if value is None or value == '':
        raise ValueError(f"Invalid config {source}: '{key}' is required")
    if not isinstance(value, kind):
        names = ' or '.join(k.__name__ for k in (kind if isinstance(kind, tuple) else (kind,)))
        raise ValueError(f"Invalid config {source}: '{key}' must be a {names}")
    return value


def _parse_datasource(entry: Dict[str, Any], source: str) -> Datasource:
    entry = {key: substitute_env(val) for key, val in entry.items()}
    where = f"{source} datasource"
    if not entry.get('jdbcUrl') and not (entry.get('type') or entry.get('className')):
        raise ValueError(f"Invalid config {where}: 'jdbcUrl' or 'type' is required")

    password = entry.get('password')
    if entry.get('encryptedPassword'):
        if password:
            logger.warning(f"{where} has both 'password' and 'encryptedPassword'; using 'encryptedPassword'")
        password = decrypt_password(entry['encryptedPassword'])

    port = entry.get('port')
    if port is not None:
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid config {where}: 'port' must be a number, got {port!r}")

    known = {'className', 'jdbcUrl', 'username', 'password', 'encryptedPassword',
             'type', 'host', 'port', 'database'}
    unknown = set(entry) - known
    if unknown:
        logger.warning(f"Ignoring unknown datasource keys in {source}: {sorted(unknown)}")

    return Datasource(
        class_name=entry.get('className') or '',
        jdbc_url=entry.get('jdbcUrl') or '',
        username=entry.get('username'),
        password=password,
        type=entry.get('type'),
        host=entry.get('host'),
        port=port,
        database=entry.get('database'),
    )


def _parse_output_file(entry: Dict[str, Any], source: str) -> OutputFile:
    if not isinstance(entry, dict):
        raise ValueError(f"Invalid config {source}: expected a mapping")
    file_id = str(_require(entry, 'id', source, (str, int)))
    file_name = _require(entry, 'fileName', source)
    large = entry.get('large', False)
    if not isinstance(large, bool):
        raise ValueError(f"Invalid config {source}: 'large' must be true or false")
    if not large and Path(file_name).suffix.lower() not in WORKBOOK_EXTENSIONS:
        raise ValueError(f"Invalid config {source}: unsupported file extension for '{file_name}'; "
                         f"use one of {', '.join(WORKBOOK_EXTENSIONS)}")

    worksheets = []
    for index, sheet in enumerate(_require(entry, 'worksheet', source, list)):
        where = f"{source} worksheet[{index}]"
        if not isinstance(sheet, dict):
            raise ValueError(f"Invalid config {where}: expected a mapping")
        worksheets.append(WorksheetSpec(
            id=str(_require(sheet, 'id', where, (str, int))),
            sql_query=_require(sheet, 'sqlQuery', where),
            sheet_name=_require(sheet, 'workSheetName', where),
        ))
    if not worksheets:
        raise ValueError(f"Invalid config {source}: 'worksheet' is empty")

    statement = str(entry.get('preparationProcedureStatement') or '').strip() or None
    return OutputFile(file_id, file_name, tuple(worksheets), large, statement)


def substitute_env(value: Any) -> Any:
    """Replace ``${NAME}`` references in a string with environment variable values."""
    if not isinstance(value, str):
        return value

    def lookup(match):
        name = match.group(1)
        if name not in os.environ:
            raise ValueError(f"Environment variable '{name}' referenced in config is not set")
        return os.environ[name]

    return _ENV_REF.sub(lookup, value)


def apply_settings(job_settings: Dict[str, Any]) -> None:
    """Merge a job's ``settings`` block into :data:`dbxl.defaults.settings`."""
    for key, value in job_settings.items():
        if isinstance(value, dict) and isinstance(settings.get(key), dict):
            settings[key].update(value)
        else:
            if key not in settings:
                logger.warning(f"Unknown setting '{key}'")
            settings[key] = value
    if job_settings:
        logger.debug(f"Applied settings: {sorted(job_settings)}")


def _get_encryption_key() -> bytes:
    """Get the Fernet key from the environment or the system keyring."""
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

    # environment variable takes precedence
    key_str = os.environ.get(KEY_ENV_VAR)
    if key_str:
        logger.debug(f"Using {KEY_ENV_VAR} from environment")
        return key_str.encode()

    if HAS_KEYRING:
        try:
            key_str = keyring.get_password(KEYRING_SERVICE, 'encryption_key')
        except Exception as e:
            logger.warning(f"Keyring access failed: {e}")
            key_str = None
        if key_str:
            logger.debug("Using encryption key from keyring")
            return key_str.encode()

    raise ValueError(f"Encryption key not found. Set {KEY_ENV_VAR} or store the key in the "
                     f"system keyring under service '{KEYRING_SERVICE}', entry 'encryption_key'.")


def decrypt_password(encrypted_password: str, encryption_key: Optional[str] = None) -> str:
    """Decrypt an ``encryptedPassword`` value."""
    try:
        key = encryption_key.encode() if encryption_key else _get_encryption_key()
        return Fernet(key).decrypt(encrypted_password.encode()).decode()
    except ValueError:
        raise
    except Exception as e:
        raise ValueError(f"Failed to decrypt password: {e}") from e


def encrypt_password(password: str, encryption_key: Optional[str] = None) -> str:
    """
    Encrypt a password for use as ``encryptedPassword``.

    Args:
        password: Clear-text password
        encryption_key: Fernet key; defaults to the key from the environment or keyring

    Returns:
        str: Encrypted password
    """
    key = encryption_key.encode() if encryption_key else _get_encryption_key()
    try:
        return Fernet(key).encrypt(password.encode()).decode()
    except Exception as e:
        raise ValueError(f"Failed to encrypt password: {e}") from e


def generate_encryption_key() -> str:
    """
    Generate a random Fernet encryption key.

    Store the key in the ``DBXL_ENCRYPTION_KEY`` environment variable or in the system
    keyring (service ``dbxl``, entry ``encryption_key``).
    """
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")
    return Fernet.generate_key().decode()
