import pytest

from warehouse_export.export.tokens import (
    RunContext,
    prepare_sql,
    substitute_course_id,
    substitute_course_module_id,
    substitute_output_tokens,
    substitute_user_token,
)


def test_prepare_sql_replaces_every_occurrence():
    ctx = RunContext(user_id=2, course_id=5, course_module_id=7)
    sql = "SELECT %%USERID%% AS me FROM prefix_x WHERE course = %%COURSEID%% AND cm = %%CMID%% OR u = %%USERID%%"
    assert prepare_sql(sql, ctx) == "SELECT 2 AS me FROM prefix_x WHERE course = 5 AND cm = 7 OR u = 2"


def test_single_substitutions():
    assert substitute_user_token("a %%USERID%%", 12) == "a 12"
    assert substitute_course_id("%%COURSEID%%", 3) == "3"
    assert substitute_course_module_id("cm=%%CMID%%", 44) == "cm=44"


def test_sql_without_tokens_is_unchanged():
    ctx = RunContext(user_id=1, course_id=1, course_module_id=1)
    assert prepare_sql("SELECT 1", ctx) == "SELECT 1"


def test_run_context_coerces_digit_strings():
    ctx = RunContext(user_id="5", course_id=" 6 ", course_module_id=7, quiz_id="0")
    assert (ctx.user_id, ctx.course_id, ctx.course_module_id, ctx.quiz_id) == (5, 6, 7, 0)


@pytest.mark.parametrize("bad", ["5 OR 1=1", "1; DROP TABLE x", True, None, 1.5])
def test_run_context_refuses_non_integer_ids(bad):
    with pytest.raises(ValueError):
        RunContext(user_id=bad, course_id=1, course_module_id=1)


def test_output_tokens():
    value = "%%WWWROOT%%/mod/quiz/view.php%%Q%%id=3%%S%% a%%C%%b"
    assert substitute_output_tokens(value, "https://lms.example.org") == (
        "https://lms.example.org/mod/quiz/view.php?id=3; a:b"
    )
