"""Tests for program cleaning and static allow-list validation."""

import pytest

from coinquery.sandbox.guardrails import (
    ProgramGuardrailConfig,
    clean_program_text,
    safe_builtins,
    validate_program,
)


RESERVED = {"price", "volume", "kadena", "TIME_PERIODS", "portfolioAddresses", "gather"} | set(safe_builtins())
NAMESPACES = {"kadena": {"getBlock", "getTransfers"}}


def check(program, config=None):
    return validate_program(program, RESERVED, NAMESPACES, config)


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------


class TestCleanProgramText:
    def test_strips_python_fence(self):
        text = "```python\ndata = {'p': await price('btc')}\nreturn data\n```"
        assert clean_program_text(text) == "data = {'p': await price('btc')}\nreturn data"

    def test_takes_first_fenced_block_and_drops_prose(self):
        text = (
            "Here is the program you asked for:\n\n"
            "```py\nresult = await price('eth')\nreturn {'eth': result}\n```\n"
            "It fetches the price."
        )
        assert clean_program_text(text) == "result = await price('eth')\nreturn {'eth': result}"

    def test_drops_leading_prose_without_fences(self):
        text = "Sure, fetching now.\ndata = {'p': await price('btc')}\nreturn data"
        assert clean_program_text(text).startswith("data = {")

    def test_keeps_tuple_unpacking_first_line(self):
        text = "btc, eth = await gather(price('btc'), price('eth'))\nreturn {'btc': btc, 'eth': eth}"
        assert clean_program_text(text) == text

    def test_appends_return_when_data_is_assigned(self):
        assert clean_program_text("data = {'p': await price('btc')}").endswith("\nreturn data")

    def test_does_not_append_return_twice(self):
        program = "data = {}\nreturn data"
        assert clean_program_text(program) == program

    def test_unclosed_fence(self):
        assert clean_program_text("```python\nreturn {'a': 1}") == "return {'a': 1}"

    @pytest.mark.parametrize("text", [None, "", "   ", "```\n```", "Just prose, no code here."])
    def test_empty_results(self, text):
        assert clean_program_text(text) == ""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateProgram:
    def test_accepts_typical_program(self):
        program = (
            "tokens = ['bitcoin', 'ethereum']\n"
            "prices = {}\n"
            "for token in tokens:\n"
            "    prices[token] = await price(token)\n"
            "block = await kadena.getBlock('abc')\n"
            "window = TIME_PERIODS.get('7d')\n"
            "top = sorted(prices.items())[:1]\n"
            "data = {'prices': prices, 'block': block, 'window': window, 'top': top, 'label': f'{len(tokens)} coins'}\n"
            "return data"
        )
        result = check(program)
        assert result.is_valid, result.error
        assert result.warnings is None

    def test_warns_when_nothing_is_returned(self):
        result = check("x = await price('btc')")
        assert result.is_valid
        assert any("no return" in warning for warning in result.warnings)

    @pytest.mark.parametrize(
        "program, fragment",
        [
            ("import os\nreturn os.listdir('.')", "Import"),
            ("from os import path\nreturn 1", "ImportFrom"),
            ("while True:\n    pass", "While"),
            ("def f():\n    return 1\nreturn f()", "FunctionDef"),
            ("class A:\n    pass\nreturn 1", "ClassDef"),
            ("f = lambda: 1\nreturn f", "Lambda"),
            ("try:\n    x = 1\nexcept Exception:\n    x = 2\nreturn x", "Try"),
            ("global price\nreturn 1", "Global"),
            ("with open('x') as f:\n    pass\nreturn 1", "With"),
            ("x = 1\ndel x\nreturn 1", "Delete"),
            ("return (y := 3)", "NamedExpr"),
            ("return 2 ** 100000", "Pow"),
            ("return 1 << 100000", "LShift"),
            ("items = [1]\nitems[0 + 0] += 1\nreturn items", "'+=' is only allowed"),
            ("return f'{1:>100000000}'", "format width"),
            ("w = 5\nreturn f'{1:>{w}}'", "computed format specs"),
        ],
    )
    def test_rejects_disallowed_constructs(self, program, fragment):
        result = check(program)
        assert not result.is_valid
        assert fragment in result.error

    @pytest.mark.parametrize(
        "program, fragment",
        [
            ("return open('/etc/passwd')", "unknown name 'open'"),
            ("return eval('1')", "unknown name 'eval'"),
            ("return __import__('os')", "name '__import__'"),
            ("return ().__class__", "attribute '__class__'"),
            ("return price.__globals__", "attribute '__globals__'"),
            ("return 'x'.format(1)", "attribute 'format'"),
            ("return await kadena.deleteEverything()", "unknown capability 'kadena.deleteEverything'"),
            ("kadena.getBlock = None\nreturn 1", "attribute assignment"),
            ("price = 1\nreturn price", "cannot rebind 'price'"),
            ("first, *rest = [1, 2]\nreturn first", "starred assignment"),
        ],
    )
    def test_rejects_names_and_attributes(self, program, fragment):
        result = check(program)
        assert not result.is_valid
        assert fragment in result.error

    def test_reports_syntax_errors_with_program_line(self):
        result = check("x = 1\ny = (\nreturn x")
        assert not result.is_valid
        assert result.error.startswith("Syntax error")

    def test_rejects_empty_program(self):
        assert check("").error == "Empty program"

    def test_node_budget(self):
        program = "data = [" + ", ".join(str(i) for i in range(200)) + "]\nreturn data"
        result = check(program, ProgramGuardrailConfig(max_nodes=50))
        assert not result.is_valid
        assert "too large" in result.error

    def test_comprehension_targets_are_local_names(self):
        result = check("return {t: await price(t) for t in ['btc', 'eth'] if t}")
        assert result.is_valid, result.error

    def test_accepts_augmented_assignment_on_names_and_simple_subscripts(self):
        program = (
            "total = 0\n"
            "counts = {'btc': 0}\n"
            "key = 'btc'\n"
            "total += 1\n"
            "counts[key] += 2\n"
            "counts['btc'] += 3\n"
            "return {'total': total, 'counts': counts, 'label': f'{total:>8.2f}'}"
        )
        result = check(program)
        assert result.is_valid, result.error
