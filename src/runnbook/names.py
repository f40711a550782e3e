"""Runner names, reserved step keys and store keys.

The identifiers defined here form the public book contract and are relied
upon by the book loader, the operator and the side runners.
"""

from re import ASCII
from re import compile as regexp
from typing import Annotated

from pydantic import Field

#: Base pattern for all identifiers.
#: Identifiers must start with a letter and may contain letters, digits, or underscores.
_NAME_PATTERN = r'[a-zA-Z][\w]*'

#: Compiled pattern for runner, step and bound variable names.
NAME_PATTERN = regexp(rf'^{_NAME_PATTERN}$', flags=ASCII)

#: Primary action executing a shell command.
EXEC_RUNNER_KEY = 'exec'
#: Primary action running another book.
INCLUDE_RUNNER_KEY = 'include'
#: Side action asserting an expression.
TEST_RUNNER_KEY = 'test'
#: Side action printing an expression.
DUMP_RUNNER_KEY = 'dump'
#: Side action binding expressions to store names.
BIND_RUNNER_KEY = 'bind'

#: Book sections which can not be used as runner names.
IF_SECTION_KEY = 'if'
DESC_SECTION_KEY = 'desc'

#: Keys of side actions, which do not count as primary actions.
SIDE_RUNNER_KEYS = (TEST_RUNNER_KEY, DUMP_RUNNER_KEY, BIND_RUNNER_KEY)

RESERVED_RUNNER_KEYS = frozenset({
    EXEC_RUNNER_KEY,
    INCLUDE_RUNNER_KEY,
    *SIDE_RUNNER_KEYS,
    IF_SECTION_KEY,
    DESC_SECTION_KEY,
})

#: Keys of the flattened store view.
STORE_VARS_KEY = 'vars'
STORE_STEPS_KEY = 'steps'
#: Flag visible to the scenario guard only.
INCLUDED_KEY = 'included'
#: Coercion helper injected into every expression.
STRING_HELPER_KEY = 'string'

RESERVED_STORE_KEYS = frozenset({
    STORE_VARS_KEY,
    STORE_STEPS_KEY,
    INCLUDED_KEY,
    STRING_HELPER_KEY,
})


RunnerName = Annotated[
    str, Field(
        pattern=rf'^{_NAME_PATTERN}$',
        title='Runner name',
        description=(
            'Name of a runner declared in the book. '
            'Steps reference the runner by using this name as their primary key.'
        ),
        examples=[
            'db',
            'req',
        ],
    ),
]

StepName = Annotated[
    str, Field(
        pattern=rf'^{_NAME_PATTERN}$',
        title='Step name',
        description=(
            'Name of a step in a book declaring steps as a mapping. '
            'Results of named steps are referenced as `steps.<name>`.'
        ),
        examples=[
            'createUser',
            'find_user',
        ],
    ),
]
