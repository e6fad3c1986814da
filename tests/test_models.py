from mtb_agent.models import Command, DynamicValue, PollResult, Status, ValueKind


def test_wrap_keeps_bool_apart_from_number():
    assert DynamicValue.wrap(True).kind is ValueKind.BOOL
    assert DynamicValue.wrap(1).kind is ValueKind.NUMBER
    assert DynamicValue.wrap(None).is_null


def test_text_rendering():
    assert DynamicValue.wrap(False).as_text() == "false"
    assert DynamicValue.wrap(4.0).as_text() == "4"
    assert DynamicValue.wrap(4.5).as_text() == "4.5"
    assert DynamicValue.wrap(None).as_text() is None
    assert DynamicValue.wrap({"a": 1}).as_text() == '{"a": 1}'


def test_int_conversion_returns_none_on_mismatch():
    assert DynamicValue.wrap("16").as_int() == 16
    assert DynamicValue.wrap("0x10").as_int() == 16
    assert DynamicValue.wrap(3.0).as_int() == 3
    assert DynamicValue.wrap(3.5).as_int() is None
    assert DynamicValue.wrap("abc").as_int() is None
    assert DynamicValue.wrap(True).as_int() is None


def test_status_parse():
    assert Status.parse("COMPLETED") is Status.COMPLETED
    assert Status.parse("nonsense") is Status.PENDING
    assert Status.parse(None) is Status.PENDING


def test_failed_poll_result_never_carries_commands():
    result = PollResult(success=False, error_message="boom", commands=[Command(name="info")])
    assert result.commands == []
    assert PollResult.ok().commands == []


def test_command_params_without_parameters():
    command = Command(name="open")
    assert command.param("program") is None
    assert command.text_param("program") is None
    assert command.int_param("program") is None
