"""Declarative scenario runner for APIs, databases and shell commands.

The `runnbook` package runs YAML books: ordered steps sending HTTP
requests, running SQL scripts, executing commands and including other
books, with `{{ expr }}` placeholders resolved against the results of
earlier steps.

Key features:
- one transaction per SQL script, with SAVEPOINTs inside caller-owned
  transactions;
- `test`, `dump` and `bind` side runners after every step;
- a command-line interface and a pytest plugin collecting books as tests.
"""
