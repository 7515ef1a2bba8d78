import sys

import pytest

from snip.snip_compiler import Compiler, CodeSpace
from snip.snip_config import SessionConfig
from snip.snip_datatypes import Severity, NO_VALUE, EntryPointNotFound
from snip.snip_references import ReferenceSet
from snip.snip_state import SubmissionState


@pytest.fixture
def compiler():
    return Compiler(ReferenceSet.from_modules(["math"]), SessionConfig(references=["math"]))


def errors(result):
    return [d for d in result.diagnostics if d.severity is Severity.ERROR]


def test_first_unit_starts_the_chain(compiler):
    res = compiler.compile("x = 1")
    assert res.success, res.diagnostics
    unit = res.unit
    assert unit.index == 0
    assert unit.previous is None
    assert unit.declared == {"x"}
    assert unit.filename == "<submission 0>"
    assert unit.entry.type_name == "Submission0"
    assert unit.entry.qualified_name == "snip.submissions.Submission0.invoke"
    assert unit.unit_id in compiler.code_space


def test_chain_grows_by_referencing_the_previous_unit(compiler):
    first = compiler.compile("x = 1").unit
    second = compiler.compile("y = x + 1", first).unit
    assert second.previous is first
    assert second.index == 1
    assert second.symbols == {"x", "y"}
    assert second.sources() == ["x = 1", "y = x + 1"]
    assert len(second) == 2
    # The earlier unit is untouched.
    assert first.symbols == {"x"}


def test_undefined_name_blocks_the_snippet(compiler):
    first = compiler.compile("x = 1").unit
    res = compiler.compile("x + z", first)
    assert not res.success
    (err,) = errors(res)
    assert err.code == "undefined-name"
    assert "'z'" in err.message
    assert (err.line, err.col) == (1, 5)
    assert len(compiler.code_space) == 1


def test_undefined_names_are_reported_in_source_order(compiler):
    res = compiler.compile("b = 1\nprint(a, c)\nd")
    assert [e.message for e in errors(res)] == [
        "name 'a' is not defined",
        "name 'c' is not defined",
        "name 'd' is not defined",
    ]


def test_syntax_error_is_a_diagnostic(compiler):
    res = compiler.compile("y = ")
    assert not res.success
    assert res.emit_error is None
    assert errors(res)[0].code == "syntax-error"


def test_retrying_a_bad_snippet_gives_the_same_diagnostics(compiler):
    first = compiler.compile("a = 1").unit
    again = compiler.compile("a = 1", first).unit
    assert compiler.compile("int(", first).diagnostics == compiler.compile("int(", again).diagnostics


def test_compile_time_errors_from_code_generation(compiler):
    res = compiler.compile("return 1")
    assert not res.success
    assert errors(res)[0].code == "syntax-error"


def test_references_and_builtins_resolve(compiler):
    assert compiler.compile("print(math.pi, len([1]))").success


def test_function_and_lambda_bodies_resolve_late(compiler):
    res = compiler.compile("def f():\n    return later\ng = lambda: also_later")
    assert res.success
    assert res.unit.declared == {"f", "g"}


def test_defaults_and_decorators_are_checked(compiler):
    res = compiler.compile("def f(a=missing):\n    return a")
    assert [e.message for e in errors(res)] == ["name 'missing' is not defined"]


def test_comprehension_targets_are_not_declared(compiler):
    res = compiler.compile(
        "squares = [n * n for n in range(3)]\n"
        "if (total := sum(squares)) > 0:\n"
        "    pass"
    )
    assert res.success
    assert res.unit.declared == {"squares", "total"}


def test_imports_bind_their_names(compiler):
    res = compiler.compile("import os.path\nfrom collections import OrderedDict as OD")
    assert res.unit.declared == {"os", "OD"}


def test_global_statements_in_functions_declare_names(compiler):
    res = compiler.compile("def setup():\n    global counter\n    counter = 0")
    assert res.unit.declared == {"setup", "counter"}


def test_bare_annotation_declares_nothing(compiler):
    res = compiler.compile("x: int")
    assert res.success
    assert res.unit.declared == frozenset()


def test_except_handler_name_is_local(compiler):
    res = compiler.compile("try:\n    pass\nexcept Exception as err:\n    print(err)")
    assert res.success
    assert "err" not in res.unit.declared


def test_star_import_disables_the_name_check(compiler):
    assert compiler.compile("from math import *\nsqrt(4)").success


def test_runtime_names_are_visible(compiler):
    assert not compiler.compile("dyn + 1").success
    assert compiler.compile("dyn + 1", runtime_names={"dyn"}).success


def test_undefined_name_policy_can_downgrade_to_warning():
    compiler = Compiler(ReferenceSet(), SessionConfig(references=[], undefined_names="warning"))
    res = compiler.compile("nope")
    assert res.success
    assert res.unit.diagnostics[0].severity is Severity.WARNING


def test_undefined_name_policy_can_be_disabled():
    compiler = Compiler(ReferenceSet(), SessionConfig(references=[], undefined_names="ignore"))
    res = compiler.compile("nope")
    assert res.success
    assert res.diagnostics == []


def test_shadowing_a_reference_is_informational(compiler):
    res = compiler.compile("math = 3")
    assert res.success
    assert any(d.code == "redefined-reference" and d.severity is Severity.INFO for d in res.diagnostics)


def test_syntax_warnings_are_kept_on_success(compiler):
    res = compiler.compile("x = 1\nx is 1")
    assert res.success
    assert any(d.code == "syntax-warning" for d in res.unit.diagnostics)


def test_diagnostics_keep_emission_order():
    compiler = Compiler(ReferenceSet(), SessionConfig(references=[], undefined_names="warning"))
    res = compiler.compile("x = 1\nprint(y)\nx is 1")
    assert res.success
    assert [d.code for d in res.diagnostics] == ["undefined-name", "syntax-warning"]


@pytest.mark.skipif(sys.version_info < (3, 12), reason="type parameter syntax needs 3.12")
def test_type_parameters_are_bound_inside_the_definition(compiler):
    res = compiler.compile("class Box[T](list[T]): pass")
    assert res.success, res.diagnostics
    assert "Box" in res.unit.declared
    assert "T" not in res.unit.declared


def test_top_level_await_needs_preview_features():
    compiler = Compiler(ReferenceSet(), SessionConfig(references=[], preview_features=False))
    res = compiler.compile("import asyncio\nawait asyncio.sleep(0)")
    assert not res.success


def test_emit_failure_does_not_load_the_unit(compiler, monkeypatch):
    def boom(tree, source, filename):
        raise RecursionError("maximum recursion depth exceeded")
    monkeypatch.setattr(compiler, "_generate", boom)
    res = compiler.compile("1 + 1")
    assert not res.success
    assert res.emit_error is not None
    assert "RecursionError" in str(res.emit_error)
    assert len(compiler.code_space) == 0


def test_code_space_resolve_miss():
    with pytest.raises(EntryPointNotFound) as info:
        CodeSpace().resolve("submission-9-deadbeef")
    assert info.value.unit_id == "submission-9-deadbeef"


@pytest.mark.asyncio
async def test_submission_returns_trailing_expression(compiler):
    unit = compiler.compile("a = 20\na + 1").unit
    state = SubmissionState()
    submission = compiler.code_space.resolve(unit.unit_id)
    assert await submission.invoke(state) == 21
    assert state.namespace["a"] == 20


@pytest.mark.asyncio
async def test_trailing_semicolon_suppresses_the_value(compiler):
    unit = compiler.compile("1 + 1;  # quiet").unit
    submission = compiler.code_space.resolve(unit.unit_id)
    assert await submission.invoke(SubmissionState()) is NO_VALUE


@pytest.mark.asyncio
async def test_top_level_await(compiler):
    unit = compiler.compile("import asyncio\nawait asyncio.sleep(0, result=7)").unit
    submission = compiler.code_space.resolve(unit.unit_id)
    assert await submission.invoke(SubmissionState()) == 7


@pytest.mark.asyncio
async def test_blank_snippet_is_a_no_op_unit(compiler):
    res = compiler.compile("   \n")
    assert res.success
    submission = compiler.code_space.resolve(res.unit.unit_id)
    assert await submission.invoke(SubmissionState()) is NO_VALUE
