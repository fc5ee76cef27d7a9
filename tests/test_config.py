# tests/test_config.py
import json
import os
from unittest.mock import patch

import pytest
import yaml
from cryptography.fernet import Fernet

from dbxl import config
from dbxl.config import (Datasource, ExportJob, apply_settings, decrypt_password, encrypt_password,
                         generate_encryption_key, load_config, parse_config, substitute_env)
from dbxl.defaults import settings

TEST_KEY = Fernet.generate_key().decode()


@pytest.fixture
def encryption_key():
    with patch.dict(os.environ, {'DBXL_ENCRYPTION_KEY': TEST_KEY}):
        yield TEST_KEY


class TestLoadConfig:

    def test_json(self, tmp_path, export_document):
        path = tmp_path / 'export.json'
        path.write_text(json.dumps(export_document))
        job = load_config(path)
        assert isinstance(job, ExportJob)
        assert job.datasource.class_name == 'oracle.jdbc.driver.OracleDriver'
        assert job.datasource.username == 'scott'
        assert job.datasource.password == 'tiger'
        assert len(job.files) == 1
        output = job.files[0]
        assert output.id == 'report'
        assert output.large is False
        assert output.file_name.endswith('report_##Date##.xlsx')
        assert output.preparation_statement is None
        assert [(w.id, w.sheet_name) for w in output.worksheets] == [('payments', 'Payments')]

    def test_yaml(self, tmp_path, export_document):
        path = tmp_path / 'export.yml'
        path.write_text(yaml.safe_dump(export_document))
        assert load_config(path).files[0].worksheets[0].sql_query == 'SELECT id, amount FROM t'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / 'nope.json')

    def test_malformed_json(self, tmp_path):
        path = tmp_path / 'bad.json'
        path.write_text('{"datasource": ')
        with pytest.raises(ValueError, match='Failed to parse'):
            load_config(path)

    def test_password_not_in_repr(self, export_document):
        job = parse_config(export_document)
        assert 'tiger' not in repr(job.datasource)

    def test_config_is_frozen(self, export_document):
        job = parse_config(export_document)
        with pytest.raises(Exception):
            job.files[0].large = True


class TestValidation:

    def test_top_level_must_be_mapping(self):
        with pytest.raises(ValueError, match='mapping'):
            parse_config(['not', 'a', 'mapping'])

    def test_missing_datasource(self, export_document):
        del export_document['datasource']
        with pytest.raises(ValueError, match="'datasource' is required"):
            parse_config(export_document)

    def test_no_files(self, export_document):
        export_document['excelFile'] = []
        with pytest.raises(ValueError, match="'excelFile'"):
            parse_config(export_document)

    def test_no_worksheets(self, export_document):
        export_document['excelFile'][0]['worksheet'] = []
        with pytest.raises(ValueError, match="'worksheet' is empty"):
            parse_config(export_document)

    def test_missing_query(self, export_document):
        del export_document['excelFile'][0]['worksheet'][0]['sqlQuery']
        with pytest.raises(ValueError, match="'sqlQuery' is required"):
            parse_config(export_document)

    def test_unsupported_extension(self, export_document):
        export_document['excelFile'][0]['fileName'] = 'report.csv'
        with pytest.raises(ValueError, match='unsupported file extension'):
            parse_config(export_document)

    def test_large_file_accepts_any_extension(self, export_document):
        export_document['excelFile'][0].update(fileName='report.dat', large=True)
        assert parse_config(export_document).files[0].large

    def test_large_must_be_boolean(self, export_document):
        export_document['excelFile'][0]['large'] = 'yes'
        with pytest.raises(ValueError, match="'large'"):
            parse_config(export_document)

    def test_numeric_ids(self, export_document):
        export_document['excelFile'][0]['id'] = 7
        assert parse_config(export_document).files[0].id == '7'

    def test_datasource_needs_url_or_type(self, export_document):
        export_document['datasource'] = {'username': 'scott'}
        with pytest.raises(ValueError, match="'jdbcUrl' or 'type'"):
            parse_config(export_document)

    def test_datasource_fields(self, export_document):
        export_document['datasource'] = {'type': 'postgres', 'host': 'pg', 'port': '5433',
                                         'database': 'sales', 'username': 'u'}
        datasource = parse_config(export_document).datasource
        assert datasource == Datasource(type='postgres', host='pg', port=5433, database='sales', username='u')
        assert datasource.connection_params() == {'host': 'pg', 'port': 5433, 'database': 'sales'}


class TestOptionalBlocks:

    def test_preparation_statement(self, export_document):
        export_document['excelFile'][0]['preparationProcedureStatement'] = '{ call refresh() }'
        assert parse_config(export_document).files[0].preparation_statement == '{ call refresh() }'

    def test_blank_preparation_statement_skipped(self, export_document):
        export_document['excelFile'][0]['preparationProcedureStatement'] = '   '
        assert parse_config(export_document).files[0].preparation_statement is None

    def test_format_rules(self, export_document):
        export_document['formatRules'] = [{'pattern': r'MONEY\(\d+,4\)', 'format': '#,##0.0000'}]
        job = parse_config(export_document)
        assert job.format_rules[0].matches('MONEY(19,4)')
        assert job.format_rules[0].format == '#,##0.0000'

    def test_bad_format_rule(self, export_document):
        export_document['formatRules'] = [{'pattern': 'X'}]
        with pytest.raises(ValueError, match="'pattern' and 'format'"):
            parse_config(export_document)

    def test_settings_block(self, export_document):
        export_document['settings'] = {'max_column_width': 40, 'logging': {'level': 'DEBUG'}}
        job = parse_config(export_document)
        apply_settings(job.settings)
        assert settings['max_column_width'] == 40
        assert settings['logging']['level'] == 'DEBUG'
        # nested blocks are merged, not replaced
        assert settings['logging']['retention_days'] == 30

    def test_settings_must_be_mapping(self, export_document):
        export_document['settings'] = ['max_column_width']
        with pytest.raises(ValueError, match="'settings'"):
            parse_config(export_document)


class TestPasswords:

    def test_env_substitution(self, export_document):
        export_document['datasource']['password'] = '${DBXL_TEST_PASSWORD}'
        with patch.dict(os.environ, {'DBXL_TEST_PASSWORD': 's3cret'}):
            assert parse_config(export_document).datasource.password == 's3cret'

    def test_env_substitution_inside_url(self):
        with patch.dict(os.environ, {'DB_HOST': 'db.internal'}):
            assert substitute_env('jdbc:postgresql://${DB_HOST}/x') == 'jdbc:postgresql://db.internal/x'

    def test_missing_env_variable(self, export_document):
        export_document['datasource']['password'] = '${DBXL_SURELY_UNSET_VARIABLE}'
        with pytest.raises(ValueError, match='DBXL_SURELY_UNSET_VARIABLE'):
            parse_config(export_document)

    def test_non_strings_untouched(self):
        assert substitute_env(5) == 5

    def test_encrypted_password(self, export_document, encryption_key):
        export_document['datasource'].pop('password')
        export_document['datasource']['encryptedPassword'] = encrypt_password('tiger')
        assert parse_config(export_document).datasource.password == 'tiger'

    def test_encrypt_with_explicit_key(self):
        key = generate_encryption_key()
        token = encrypt_password('hunter2', key)
        assert token != 'hunter2'
        assert decrypt_password(token, key) == 'hunter2'

    def test_wrong_key(self, encryption_key):
        token = encrypt_password('tiger', generate_encryption_key())
        with pytest.raises(ValueError, match='Failed to decrypt'):
            decrypt_password(token)

    def test_no_key_available(self):
        env = {k: v for k, v in os.environ.items() if k != 'DBXL_ENCRYPTION_KEY'}
        with patch.dict(os.environ, env, clear=True), patch.object(config, 'HAS_KEYRING', False):
            with pytest.raises(ValueError, match='Encryption key not found'):
                encrypt_password('tiger')

    def test_key_from_keyring(self):
        env = {k: v for k, v in os.environ.items() if k != 'DBXL_ENCRYPTION_KEY'}
        with patch.dict(os.environ, env, clear=True), \
                patch.object(config, 'HAS_KEYRING', True), \
                patch.object(config.keyring, 'get_password', return_value=TEST_KEY) as get_password:
            token = encrypt_password('tiger')
        get_password.assert_called_with('dbxl', 'encryption_key')
        assert decrypt_password(token, TEST_KEY) == 'tiger'
