import pytest

from edge_gate import BearerExtractor, ChainExtractor, CookieExtractor, MissingToken, RequestContext


def ctx(cookies=None, headers=None):
    return RequestContext.build("/", cookies=cookies, headers=headers)


def test_bearer_extractor_missing():
    with pytest.raises(MissingToken, match="Missing Authorization header"):
        BearerExtractor().extract(ctx())


def test_bearer_extractor_ok():
    assert BearerExtractor().extract(ctx(headers={"Authorization": "Bearer abc.def.ghi"})) == "abc.def.ghi"


@pytest.mark.parametrize("value", ["Basic abc", "Bearer", "Bearer    "])
def test_bearer_extractor_rejects_bad_headers(value):
    with pytest.raises(MissingToken):
        BearerExtractor().extract(ctx(headers={"Authorization": value}))


def test_cookie_extractor_first_non_empty_cookie_wins():
    extractor = CookieExtractor(("a", "b"))

    assert extractor.extract(ctx(cookies={"a": "", "b": "tok"})) == "tok"


def test_cookie_extractor_missing():
    with pytest.raises(MissingToken):
        CookieExtractor().extract(ctx(cookies={"other": "x"}))


def test_cookie_extractor_requires_names():
    with pytest.raises(ValueError):
        CookieExtractor(())


def test_chain_extractor_falls_through_to_header():
    chain = ChainExtractor(CookieExtractor(), BearerExtractor())

    assert chain.extract(ctx(headers={"Authorization": "Bearer h.d.r"})) == "h.d.r"


def test_chain_extractor_raises_last_missing_token():
    chain = ChainExtractor(CookieExtractor(), BearerExtractor())

    with pytest.raises(MissingToken, match="Authorization"):
        chain.extract(ctx())
