"""Unit tests for streaming primitives."""

import pytest
from pydantic import BaseModel

from colloquy.errors import MalformedToolCall
from colloquy.streaming import FunctionCallAccumulator


class WeatherArgs(BaseModel):
    city: str


class TestFunctionCallAccumulator:
    def test_name_resolves_once_across_fragments(self):
        acc = FunctionCallAccumulator(["get_weather"])
        edges = [acc.append_name(f) for f in ["get", "_wea", "ther"]]
        edges += [acc.append_arguments(f) for f in ['{"ci', 'ty": "Paris"}']]
        edges.append(acc.finalize())

        assert edges == [False, False, True, False, False, False]
        assert acc.name == "get_weather"
        assert acc.name_resolved

    def test_arguments_accumulated_across_fragments(self):
        acc = FunctionCallAccumulator(["get_weather"])
        acc.append_name("get_weather", call_id="c1")
        acc.append_arguments('{"ci')
        acc.append_arguments('ty": "Paris"}')

        assert acc.raw_arguments == '{"city": "Paris"}'
        assert acc.call_id == "c1"
        assert acc.decode(WeatherArgs) == WeatherArgs(city="Paris")

    def test_first_call_id_wins(self):
        acc = FunctionCallAccumulator(["echo"])
        acc.append_name("ec", call_id="c1")
        acc.append_name("ho", call_id="c2")
        assert acc.call_id == "c1"

    def test_unknown_name_never_resolves(self):
        acc = FunctionCallAccumulator(["get_weather"])
        acc.append_name("get_time")
        acc.append_arguments("{}")

        assert not acc.finalize()
        assert not acc.name_resolved
        assert acc.started

    def test_prefix_of_other_tool_waits_for_arguments(self):
        acc = FunctionCallAccumulator(["search", "search_contacts"])
        assert not acc.append_name("search")
        assert acc.append_arguments('{"q": "x"}')
        assert acc.name == "search"

    def test_prefix_extended_to_longer_name(self):
        acc = FunctionCallAccumulator(["search", "search_contacts"])
        assert not acc.append_name("search")
        assert acc.append_name("_contacts")
        assert acc.name == "search_contacts"

    def test_prefix_resolved_at_finalize_without_arguments(self):
        acc = FunctionCallAccumulator(["search", "search_contacts"])
        acc.append_name("search")
        assert acc.finalize()
        assert not acc.finalize()

    def test_arguments_before_name(self):
        acc = FunctionCallAccumulator(["echo"])
        assert not acc.append_arguments('{"text": ')
        assert acc.append_name("echo") is True
        acc.append_arguments('"hi"}')
        assert acc.raw_arguments == '{"text": "hi"}'

    def test_empty_accumulator(self):
        acc = FunctionCallAccumulator(["echo"])
        assert not acc.started
        assert not acc.finalize()

    def test_empty_arguments_decode_as_empty_object(self):
        class NoArgs(BaseModel):
            pass

        acc = FunctionCallAccumulator(["ping"])
        acc.append_name("ping")
        assert acc.decode(NoArgs) == NoArgs()

    def test_invalid_json_raises_malformed(self):
        acc = FunctionCallAccumulator(["get_weather"])
        acc.append_name("get_weather")
        acc.append_arguments('{"city": ')

        with pytest.raises(MalformedToolCall) as exc_info:
            acc.decode(WeatherArgs)
        assert exc_info.value.tool_name == "get_weather"
        assert exc_info.value.raw_arguments == '{"city": '

    def test_schema_mismatch_raises_malformed(self):
        acc = FunctionCallAccumulator(["get_weather"])
        acc.append_name("get_weather")
        acc.append_arguments('{"town": "Paris"}')

        with pytest.raises(MalformedToolCall):
            acc.decode(WeatherArgs)

    def test_decode_plain_type(self):
        acc = FunctionCallAccumulator(["sum"])
        acc.append_name("sum")
        acc.append_arguments('{"a": 1, "b": 2}')
        assert acc.decode(dict[str, int]) == {"a": 1, "b": 2}
