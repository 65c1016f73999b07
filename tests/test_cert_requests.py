import pytest

from acmedelegate.cert_requests import (
    CertRequest, challenge_name, get_base_domain, is_valid_dns_name, parse_cert_arg, parse_cert_args
)
from acmedelegate.errors import InvalidArgument


def test_parse_shorthand_domain():
    req = parse_cert_arg('example.com')
    assert req == CertRequest(name='example.com', domains=('example.com',), key_type=None)
    assert req.primary_domain == 'example.com'

def test_parse_named_request_with_key_type():
    req = parse_cert_arg('site@example.com,www.example.com/key_type=ec256')
    assert req.name == 'site'
    assert req.domains == ('example.com', 'www.example.com')
    assert req.key_type == 'ec256'

def test_parse_shorthand_with_key_type():
    req = parse_cert_arg('example.com/key_type=rsa2048')
    assert req.name == 'example.com'
    assert req.domains == ('example.com',)
    assert req.key_type == 'rsa2048'

def test_parse_normalizes_domains():
    req = parse_cert_arg('site@Example.COM, www.example.com,,example.com')
    assert req.domains == ('example.com', 'www.example.com')

def test_parse_wildcard():
    req = parse_cert_arg('wild@*.example.com,example.com')
    assert req.domains == ('*.example.com', 'example.com')

@pytest.mark.parametrize('arg', [
    'site/key_type=ec256@example.com',
    'site@',
    '@example.com',
    '',
    'site@example',
    'site@-bad.example.com',
    'site@bad-.example.com',
    'site@*.*.example.com',
    'site@www.*.example.com',
    'site@under_score.example.com',
    'site@example.com/key_type=dsa',
    'site@example.com/color=blue',
    'si\\te@example.com',
])
def test_parse_invalid(arg):
    with pytest.raises(InvalidArgument):
        parse_cert_arg(arg)

def test_parse_args_rejects_duplicate_names():
    with pytest.raises(InvalidArgument, match="Duplicate certificate name"):
        parse_cert_args(['site@example.com', 'site@other.example.com'])

def test_parse_args_keeps_order():
    reqs = parse_cert_args(['b@b.example.com', 'a.example.com'])
    assert [r.name for r in reqs] == ['b', 'a.example.com']

def test_base_domain_and_challenge_name():
    assert get_base_domain('*.example.com') == 'example.com'
    assert get_base_domain('www.example.com') == 'www.example.com'
    assert challenge_name('*.example.com') == '_acme-challenge.example.com'
    assert challenge_name('example.com') == '_acme-challenge.example.com'

def test_is_valid_dns_name_lengths():
    assert is_valid_dns_name('a' * 63 + '.com')
    assert not is_valid_dns_name('a' * 64 + '.com')
    assert not is_valid_dns_name(('a' * 60 + '.') * 5 + 'com')
