"""Tests for the sandbox executor."""

import pytest

from coinquery.sandbox.executor import NO_DATA_MESSAGE, ExecutionResult, SandboxExecutor
from coinquery.sandbox.guardrails import ProgramGuardrailConfig


@pytest.fixture
def executor(fake_registry):
    return SandboxExecutor(fake_registry, ProgramGuardrailConfig(timeout_seconds=2.0))


class TestExecutionResult:
    def test_success_requires_value(self):
        with pytest.raises(ValueError):
            ExecutionResult(ok=True, value=None)

    def test_failure_requires_message_and_no_value(self):
        with pytest.raises(ValueError):
            ExecutionResult(ok=False, error_message="")
        with pytest.raises(ValueError):
            ExecutionResult(ok=False, value={"a": 1}, error_message="boom")

    def test_failure_raw_data_shape(self):
        result = ExecutionResult.failure("boom")
        raw = result.to_raw_data()
        assert raw["error"] is True
        assert raw["message"] == "boom"
        assert raw["partialData"] == {}
        assert raw["timestamp"].endswith("Z")

    def test_success_raw_data_is_value(self):
        assert ExecutionResult.success({"p": 1}).to_raw_data() == {"p": 1}


class TestSandboxExecutor:
    @pytest.mark.asyncio
    async def test_returns_capability_value(self, executor):
        result = await executor.execute(
            "```python\ndata = {'price': await price('bitcoin')}\nreturn data\n```"
        )
        assert result.ok, result.error_message
        assert result.value == {"price": "$65000.00"}
        assert result.program.startswith("data = ")
        assert result.elapsed_ms >= 0

    @pytest.mark.asyncio
    async def test_data_assignment_without_return(self, executor):
        result = await executor.execute("data = {'eth': await price('ethereum')}")
        assert result.ok
        assert result.value == {"eth": "$3200.50"}

    @pytest.mark.asyncio
    async def test_namespace_capability_and_gather(self, executor):
        program = (
            "block, btc = await gather(kadena.getBlock('abc'), price('bitcoin'))\n"
            "return {'height': block['block']['height'], 'btc': btc}"
        )
        result = await executor.execute(program)
        assert result.ok, result.error_message
        assert result.value == {"height": 100, "btc": "$65000.00"}

    @pytest.mark.asyncio
    async def test_constants_are_read_only_copies(self, executor):
        result = await executor.execute("return {'periods': TIME_PERIODS, 'wallets': portfolioAddresses}")
        assert result.ok
        assert result.value["periods"]["7d"] == 7 * 24 * 60 * 60 * 1000
        assert result.value["wallets"] == ["0x0000000000000000000000000000000000000000"]

        mutated = await executor.execute("TIME_PERIODS['1d'] = 0\nreturn 1")
        assert not mutated.ok
        assert "TypeError" in mutated.error_message

    @pytest.mark.asyncio
    async def test_capability_fault_is_captured(self, executor):
        result = await executor.execute("return {'volume': await volume('bitcoin')}")
        assert not result.ok
        assert "503" in result.error_message
        assert result.value is None

    @pytest.mark.asyncio
    async def test_unknown_capability_is_rejected_before_running(self, executor):
        result = await executor.execute("return {'x': await marketCap('bitcoin')}")
        assert not result.ok
        assert "unknown name 'marketCap'" in result.error_message

    @pytest.mark.asyncio
    async def test_runtime_error_is_captured(self, executor):
        result = await executor.execute("data = {}\nreturn data['missing']")
        assert not result.ok
        assert result.error_message.startswith("KeyError")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("program", ["x = await price('bitcoin')", "return None", "pass"])
    async def test_no_value_becomes_error(self, executor, program):
        result = await executor.execute(program)
        assert not result.ok
        assert result.error_message == NO_DATA_MESSAGE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("program", [None, "", "```\n```"])
    async def test_empty_program(self, executor, program):
        result = await executor.execute(program)
        assert not result.ok
        assert result.error_message == "Empty program"

    @pytest.mark.asyncio
    async def test_time_budget(self, fake_registry):
        executor = SandboxExecutor(fake_registry, ProgramGuardrailConfig(timeout_seconds=0.05))
        result = await executor.execute("return await slowQuery()")
        assert not result.ok
        assert "time budget" in result.error_message

    @pytest.mark.asyncio
    async def test_step_budget_stops_long_loops(self, fake_registry):
        executor = SandboxExecutor(fake_registry, ProgramGuardrailConfig(max_steps=50))
        program = (
            "total = 0\n"
            "for i in range(100):\n"
            "    total += i\n"
            "return total"
        )
        result = await executor.execute(program)
        assert not result.ok
        assert "Step budget exceeded" in result.error_message

    @pytest.mark.asyncio
    async def test_comprehensions_consume_steps(self, fake_registry):
        executor = SandboxExecutor(fake_registry, ProgramGuardrailConfig(max_steps=10))
        result = await executor.execute("return [i for i in range(50)]")
        assert not result.ok
        assert "Step budget exceeded" in result.error_message

    @pytest.mark.asyncio
    async def test_bounded_range(self, executor):
        assert (await executor.execute("return len(range(10))")).value == 10

        result = await executor.execute("return list(range(100000000))")
        assert not result.ok
        assert "range()" in result.error_message

    @pytest.mark.asyncio
    async def test_sequence_repetition_is_bounded(self, executor):
        result = await executor.execute("return 'x' * 100000000")
        assert not result.ok
        assert "repetition" in result.error_message

        small = await executor.execute("s = 'ab'\ns *= 3\nreturn {'s': s, 'n': 6 * 7}")
        assert small.ok
        assert small.value == {"s": "ababab", "n": 42}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("step", ["s += s", "s = s + s"])
    async def test_concatenation_is_bounded(self, executor, step):
        program = f"s = 'x'\nfor i in range(24):\n    {step}\nreturn len(s)"
        result = await executor.execute(program)
        assert not result.ok
        assert "Concatenation exceeds" in result.error_message

    @pytest.mark.asyncio
    async def test_small_concatenation_keeps_python_semantics(self, executor):
        program = (
            "items = [1]\n"
            "alias = items\n"
            "items += (2, 3)\n"
            "counts = {'btc': 1}\n"
            "counts['btc'] += 2\n"
            "return {'items': items + [4], 'alias': alias, 'counts': counts, 'label': 'a' + 'b', 'n': 1 + 2.5}"
        )
        result = await executor.execute(program)
        assert result.ok, result.error_message
        assert result.value == {
            "items": [1, 2, 3, 4],
            "alias": [1, 2, 3],
            "counts": {"btc": 3},
            "label": "ab",
            "n": 3.5,
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "program",
        [
            "s = 'x' * 1000\nreturn s.replace('x', 'y' * 2000)",
            "glue = 'x' * 1000\nreturn glue.join(['a'] * 2000)",
            "items = [0] * 900000\nitems.extend(items)\nreturn len(items)",
        ],
    )
    async def test_growing_methods_are_bounded(self, executor, program):
        result = await executor.execute(program)
        assert not result.ok
        assert "method exceeds" in result.error_message

    @pytest.mark.asyncio
    async def test_growing_methods_still_work(self, executor):
        program = (
            "items = [1]\n"
            "items.extend(i for i in [2, 3])\n"
            "return {'j': '-'.join(['a', 'b']), 'r': 'aaa'.replace('a', 'b', 2), 'e': items}"
        )
        result = await executor.execute(program)
        assert result.ok, result.error_message
        assert result.value == {"j": "a-b", "r": "bba", "e": [1, 2, 3]}

    @pytest.mark.asyncio
    async def test_integer_products_are_bounded(self, executor):
        result = await executor.execute("n = 3\nfor i in range(20):\n    n = n * n\nreturn n")
        assert not result.ok
        assert "Integer product exceeds" in result.error_message

    @pytest.mark.asyncio
    async def test_sum_only_adds_numbers(self, executor):
        assert (await executor.execute("return sum([1, 2.5])")).value == 3.5

        result = await executor.execute("return sum([[1], [2]], [])")
        assert not result.ok
        assert "sum() only adds numbers" in result.error_message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "program",
        [
            "data = {'a': 1}\ndata['self'] = data\nreturn data",
            "items = []\nitems.append(items)\nreturn items",
        ],
    )
    async def test_cyclic_value_is_a_failed_result(self, executor, program):
        result = await executor.execute(program)
        assert not result.ok
        assert result.error_message == "Program returned a cyclic value"

    @pytest.mark.asyncio
    async def test_deeply_nested_value_is_a_failed_result(self, executor):
        result = await executor.execute("x = []\nfor i in range(5000):\n    x = [x]\nreturn x")
        assert not result.ok
        assert "RecursionError" in result.error_message

    @pytest.mark.asyncio
    async def test_runs_do_not_share_state(self, executor):
        first = await executor.execute("data = {'a': 1}\nreturn data")
        second = await executor.execute("return data")
        assert first.ok
        assert not second.ok

    @pytest.mark.asyncio
    async def test_no_ambient_builtins(self, executor):
        for program in ["return open('x')", "return __import__('os')", "return print('x')"]:
            result = await executor.execute(program)
            assert not result.ok
            assert result.error_message.startswith("Program rejected")

    @pytest.mark.asyncio
    async def test_unawaited_capability_is_stringified(self, executor):
        result = await executor.execute("return {'fn': price}")
        assert result.ok
        assert isinstance(result.value["fn"], str)

    def test_validate_without_running(self, executor):
        assert executor.validate("return await price('btc')").is_valid
        assert not executor.validate("import os").is_valid
