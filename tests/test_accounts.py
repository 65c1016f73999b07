import json
import os
import stat
import threading

import pytest

from acmedelegate.accounts import DelegationAccount
from acmedelegate.accounts.json_file import JSONAccountStore
from acmedelegate.errors import AccountStoreError

ACCOUNT = DelegationAccount(
    username='c36f50e8-4632-44f0-83fe-e070fef28a10',
    password='htB9mR9DYgcu9bX_afHF62erXaH2TS7bg9KW3F7Z',
    fulldomain='8e5700ea-a4bf-41c7-8a77-e990661dcc6a.auth.acme-dns.io',
    subdomain='8e5700ea-a4bf-41c7-8a77-e990661dcc6a',
    allowfrom=['192.168.100.1/24'],
)


def test_load_missing_file_is_empty(tmp_path):
    store = JSONAccountStore(str(tmp_path / 'acme-dns-accounts.json'))
    store.load_all()

    account, found = store.get('example.com')
    assert account is None
    assert found is False

def test_save_and_reload(tmp_path):
    path = str(tmp_path / 'nested' / 'acme-dns-accounts.json')
    store = JSONAccountStore(path)
    store.set('example.com', ACCOUNT)
    store.set('*.example.com', ACCOUNT)
    store.save_all()

    fresh = JSONAccountStore(path)
    fresh.load_all()
    account, found = fresh.get('example.com')
    assert found
    assert account == ACCOUNT
    assert fresh.get('*.example.com')[0].password == ACCOUNT.password

def test_saved_file_format_and_permissions(tmp_path):
    path = str(tmp_path / 'acme-dns-accounts.json')
    store = JSONAccountStore(path)
    store.set('example.com', ACCOUNT)
    store.save_all()

    with open(path) as f:
        data = json.load(f)
    assert data == {'example.com': {
        'username': ACCOUNT.username,
        'password': ACCOUNT.password,
        'fulldomain': ACCOUNT.fulldomain,
        'subdomain': ACCOUNT.subdomain,
        'allowfrom': ['192.168.100.1/24'],
    }}
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert [p for p in os.listdir(tmp_path) if p.startswith('.acme-dns-accounts-')] == []

def test_load_lego_file_without_allowfrom(tmp_path):
    path = tmp_path / 'acme-dns-accounts.json'
    path.write_text(json.dumps({'example.com': {
        'username': 'u', 'password': 'p', 'fulldomain': 'f.auth.example.org', 'subdomain': 'f',
    }}))
    store = JSONAccountStore(str(path))
    store.load_all()

    account, found = store.get('example.com')
    assert found
    assert account.allowfrom == []

@pytest.mark.parametrize('content', ['{not json', '["a", "b"]', '{"example.com": {"username": "u"}}'])
def test_load_malformed_file(tmp_path, content):
    path = tmp_path / 'acme-dns-accounts.json'
    path.write_text(content)
    store = JSONAccountStore(str(path))

    with pytest.raises(AccountStoreError):
        store.load_all()

def test_save_failure_raises(tmp_path):
    blocker = tmp_path / 'blocker'
    blocker.write_text('not a directory')
    store = JSONAccountStore(str(blocker / 'acme-dns-accounts.json'))
    store.set('example.com', ACCOUNT)

    with pytest.raises(AccountStoreError):
        store.save_all()

def test_remove(tmp_path):
    store = JSONAccountStore(str(tmp_path / 'acme-dns-accounts.json'))
    store.set('example.com', ACCOUNT)
    store.remove('example.com')
    store.remove('missing.example.com')

    assert store.get('example.com') == (None, False)

def test_for_path_returns_one_instance_per_file(tmp_path):
    path = tmp_path / 'acme-dns-accounts.json'
    first = JSONAccountStore.for_path(str(path))
    second = JSONAccountStore.for_path(os.path.join(str(tmp_path), '.', 'acme-dns-accounts.json'))

    assert first is second
    assert JSONAccountStore.for_path(str(tmp_path / 'other.json')) is not first

def test_concurrent_writers_and_readers(tmp_path):
    store = JSONAccountStore(str(tmp_path / 'acme-dns-accounts.json'))
    errors = []

    def writer(i):
        store.set(f"d{i}.example.com", ACCOUNT)

    def reader(i):
        account, found = store.get(f"d{i}.example.com")
        if found and account != ACCOUNT:
            errors.append(i)

    threads = [threading.Thread(target=fn, args=(i,)) for i in range(50) for fn in (writer, reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert all(store.get(f"d{i}.example.com")[1] for i in range(50))
