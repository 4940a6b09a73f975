import pytest

from lodestar.retrieval.query_expansion import is_code_identifier, split_identifier, tokenize_code_query


@pytest.mark.parametrize(
    "query,expected",
    [
        ("getUserName", "get User Name getUserName"),
        ("get_user_name", "get user name get_user_name"),
        ("UserService", "User Service UserService"),
        ("MAX_RETRY_COUNT", "MAX RETRY COUNT MAX_RETRY_COUNT"),
        ("how to get user", "how to get user"),
    ],
)
def test_tokenize_code_query(query, expected):
    assert tokenize_code_query(query) == expected


def test_mixed_query_keeps_every_word():
    tokens = tokenize_code_query("find getUserName function").split()

    assert tokens == ["find", "get", "User", "Name", "getUserName", "function"]


def test_dotted_paths_are_split_recursively():
    assert split_identifier("React.useState") == ["React", "use", "State"]
    assert tokenize_code_query("React.useState") == "React use State React.useState"


def test_acronyms_and_plain_words():
    assert split_identifier("HTMLParser") == ["HTML", "Parser"]
    assert is_code_identifier("HTMLParser")
    assert not is_code_identifier("parser")
    assert not is_code_identifier("HTML")
    assert split_identifier("parser") == ["parser"]


def test_natural_language_query_is_returned_verbatim():
    for query in ("how  to get user", "  leading and trailing  ", "tabs\tand\nnewlines"):
        assert tokenize_code_query(query) == query


def test_expansion_is_idempotent_on_natural_words():
    once = tokenize_code_query("where is the user name stored")

    assert tokenize_code_query(once) == once
    assert tokenize_code_query(tokenize_code_query("user get name")) == "user get name"
