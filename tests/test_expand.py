"""Tests for placeholder expansion and expression evaluation."""

from typing import TYPE_CHECKING

import pytest

from runnbook.core.expand import evaluate, expand
from runnbook.errors import ExpansionError

if TYPE_CHECKING:
    from typing import Any

STORE = {
    'vars': {
        'id': 1,
        'code': '123',
        'name': 'alice',
        'quote': 'say "hi"',
        'lines': 'first\nsecond',
        'empty': '',
        'flag': True,
        'ratio': 0.5,
        'key': 'dynamic',
    },
    'steps': [
        {'rows': [{'id': 7, 'name': 'bob'}]},
        {'body': {'items': [1, 2], 'values': 'v', 'get': 3}},
    ],
    'token': 'secret',
}


@pytest.mark.parametrize('value, expected', (
    pytest.param('{{ vars.id }}', 1, id='whole integer'),
    pytest.param('{{ vars.code }}', '123', id='numeric string stays string'),
    pytest.param('{{ vars.name }}', 'alice', id='whole string'),
    pytest.param('{{ vars.empty }}', '', id='empty string'),
    pytest.param('{{ vars.lines }}', 'first\nsecond', id='multi-line string'),
    pytest.param('{{ steps[0].rows[0].name }}', 'bob', id='step result'),
    pytest.param('{{ steps[1].body.values }}', 'v', id='key named after a method'),
    pytest.param('{{ steps[1].body.get }}', 3, id='key named get'),
    pytest.param('{{ token }}', 'secret', id='bound name'),
    pytest.param('{{ string(vars.id) }}', '1', id='string helper'),
    pytest.param('{{ vars.id + 1 }}', 2, id='arithmetic'),
    pytest.param('{{vars.id}}', 1, id='without spaces'),
    pytest.param('id = {{ vars.id }}', 'id = 1', id='embedded integer'),
    pytest.param('code = {{ vars.code }}', 'code = 123', id='embedded numeric string'),
    pytest.param('{{ vars.name }} and {{ vars.id }}', 'alice and 1', id='two placeholders'),
    pytest.param('msg: {{ vars.quote }}', 'msg: say "hi"', id='embedded quotes'),
    pytest.param('text', 'text', id='no placeholder'),
    pytest.param(None, None, id='null'),
    pytest.param(
        {'query': 'SELECT * FROM users WHERE id = {{ vars.id }};', 'limit': 10},
        {'query': 'SELECT * FROM users WHERE id = 1;', 'limit': 10},
        id='mapping',
    ),
    pytest.param(
        ['{{ vars.id }}', '{{ vars.code }}', 'literal'],
        [1, '123', 'literal'],
        id='sequence',
    ),
    pytest.param(
        {'{{ vars.key }}': '{{ vars.name }}'},
        {'dynamic': 'alice'},
        id='mapping key',
    ),
    pytest.param(
        {'query': 'SELECT *\nFROM users\nWHERE id = {{ vars.id }};\n'},
        {'query': 'SELECT *\nFROM users\nWHERE id = 1;\n'},
        id='multi-line scalar',
    ),
))
def test_expand(value: 'Any', expected: 'Any') -> None:
    """Resolve placeholders against the store."""
    assert expand(value, STORE) == expected


def test_expand_fast_path() -> None:
    """Return values without placeholders unchanged."""
    value = {'path': '/users', 'body': [1, 2]}

    assert expand(value, {}) is value


@pytest.mark.parametrize('value, message', (
    pytest.param('{{ vars.flag }}', r'^invalid format: True', id='bool'),
    pytest.param('{{ vars.ratio }}', r'^invalid format: 0.5', id='float'),
    pytest.param('{{ steps[0] }}', r'^invalid format: \{', id='mapping'),
    pytest.param('{{ vars.missing }}', r'^can not evaluate \(vars.missing\)', id='undefined'),
    pytest.param('{{ missing.name }}', r'^can not evaluate \(missing.name\)', id='undefined parent'),
    pytest.param('{{ vars.id + }}', r'^can not evaluate \(vars.id \+\)', id='syntax'),
    pytest.param('{{ vars.name + 1 }}', r'^can not evaluate', id='type error'),
))
def test_expand_errors(value: str, message: str) -> None:
    """Fail on expressions which can not be inserted."""
    with pytest.raises(ExpansionError, match=message) as error:
        expand({'value': value}, STORE)

    assert 'value:' in error.value.context['element']


@pytest.mark.parametrize('expression, expected', (
    pytest.param('vars.id == 1', True, id='comparison'),
    pytest.param('vars.flag and included', False, id='extra names'),
    pytest.param('steps | length', 2, id='filter'),
    pytest.param('steps[1].body.items', [1, 2], id='key named items'),
    pytest.param('steps[1].body.items | length', 2, id='key named items filtered'),
    pytest.param('vars.name.upper()', 'ALICE', id='string method'),
    pytest.param("vars.name ~ '!'", 'alice!', id='concatenation'),
    pytest.param('steps[0].rows', [{'id': 7, 'name': 'bob'}], id='structure'),
))
def test_evaluate(expression: str, expected: 'Any') -> None:
    """Evaluate expressions with the store as globals."""
    assert evaluate(expression, {**STORE, 'included': False}) == expected


def test_evaluate_sandboxed() -> None:
    """Reject access to unsafe attributes."""
    with pytest.raises(ExpansionError, match=r'^can not evaluate'):
        evaluate('vars.__class__.__mro__', STORE)
