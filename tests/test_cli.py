# tests/test_cli.py
import json
import os
import sqlite3
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet
from openpyxl import load_workbook

from dbxl import cli
from dbxl.config import decrypt_password


@pytest.fixture
def sqlite_config(tmp_path):
    """Export document for a sqlite database, logging into tmp_path."""
    db_path = tmp_path / 'shop.db'
    connection = sqlite3.connect(str(db_path))
    connection.execute('CREATE TABLE items (sku TEXT, qty INTEGER)')
    connection.executemany('INSERT INTO items VALUES (?, ?)', [('A-1', 3), ('B-2', 5)])
    connection.commit()
    connection.close()

    document = {
        'datasource': {'className': 'sqlite3', 'jdbcUrl': f'jdbc:sqlite:{db_path}'},
        'excelFile': [{
            'id': 'items',
            'fileName': str(tmp_path / 'items_##Date##.xlsx'),
            'worksheet': [{'id': 'all', 'sqlQuery': 'SELECT sku, qty FROM items', 'workSheetName': 'Items'}],
        }],
        'settings': {'logging': {'directory': str(tmp_path / 'logs'), 'console': False}},
    }
    path = tmp_path / 'export.json'
    path.write_text(json.dumps(document))
    return path


class TestMain:

    def test_no_config_prints_usage(self, capsys):
        assert cli.main([]) == 0
        assert 'usage: dbxl' in capsys.readouterr().out

    def test_export(self, sqlite_config, tmp_path):
        assert cli.main(['-config', str(sqlite_config)]) == 0
        written = list(tmp_path.glob('items_*.xlsx'))
        assert len(written) == 1
        ws = load_workbook(written[0])['Items']
        assert [c.value for c in ws[1]] == ['sku', 'qty']
        assert ws.max_row == 3
        assert list((tmp_path / 'logs').glob('dbxl_*.log'))

    def test_long_option(self, sqlite_config):
        assert cli.main(['--config', str(sqlite_config)]) == 0

    def test_missing_config_file(self, tmp_path, capsys):
        assert cli.main(['-config', str(tmp_path / 'missing.json')]) == 1
        assert 'Config file not found' in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / 'bad.json'
        path.write_text(json.dumps({'datasource': {}}))
        assert cli.main(['-config', str(path)]) == 1

    def test_export_failure_exits_1(self, sqlite_config, tmp_path):
        document = json.loads(sqlite_config.read_text())
        document['excelFile'][0]['worksheet'][0]['sqlQuery'] = 'SELECT * FROM no_such_table'
        sqlite_config.write_text(json.dumps(document))
        assert cli.main(['-config', str(sqlite_config)]) == 1
        error_logs = list((tmp_path / 'logs').glob('dbxl_*_error.log'))
        assert len(error_logs) == 1
        assert 'no_such_table' in error_logs[0].read_text()


class TestKeyCommands:

    def test_generate_key(self, capsys):
        assert cli.main(['-generate-key']) == 0
        key = capsys.readouterr().out.strip()
        Fernet(key.encode())

    def test_encrypt_password(self, capsys):
        key = Fernet.generate_key().decode()
        with patch.dict(os.environ, {'DBXL_ENCRYPTION_KEY': key}):
            assert cli.main(['-encrypt-password', 'tiger']) == 0
        token = capsys.readouterr().out.strip()
        assert decrypt_password(token, key) == 'tiger'

    def test_encrypt_password_prompts(self, capsys):
        key = Fernet.generate_key().decode()
        with patch.dict(os.environ, {'DBXL_ENCRYPTION_KEY': key}), \
                patch('dbxl.cli.getpass.getpass', return_value='prompted'):
            assert cli.main(['-encrypt-password']) == 0
        assert decrypt_password(capsys.readouterr().out.strip(), key) == 'prompted'

    def test_encrypt_password_without_key(self, capsys):
        env = {k: v for k, v in os.environ.items() if k != 'DBXL_ENCRYPTION_KEY'}
        with patch.dict(os.environ, env, clear=True), patch('dbxl.config.HAS_KEYRING', False):
            assert cli.main(['-encrypt-password', 'tiger']) == 1
        assert 'Encryption key not found' in capsys.readouterr().err
