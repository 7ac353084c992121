from colloquy.message import Attachment, AttachmentKind, Turn, TurnRole


def make_turn(role=TurnRole.USER, **fields):
    return Turn(chat_id="c1", role=role, **fields)


class TestAttachment:
    def test_name_from_path(self):
        assert Attachment(path="/docs/report.pdf").name == "report.pdf"
        assert Attachment(path="https://example.com/a/page/", kind=AttachmentKind.URL).name == "page"

    def test_is_local(self):
        assert Attachment(path="/tmp/a.txt").is_local
        assert Attachment(path="file:///tmp/a.txt").is_local
        assert not Attachment(path="https://example.com", kind=AttachmentKind.URL).is_local

    def test_only_docs_have_text(self):
        assert Attachment(path="a.txt").has_text
        assert not Attachment(path="a.png", kind=AttachmentKind.PHOTO).has_text

    def test_render_is_file_reference(self):
        assert Attachment(path="/tmp/a.txt").render() == "file_path: /tmp/a.txt"


class TestTurn:
    def test_attach_dedups_by_path(self):
        turn = make_turn()
        first = turn.attach(Attachment(path="/a.txt"))
        again = turn.attach(Attachment(path="/a.txt", kind=AttachmentKind.PHOTO))

        assert again is first
        assert len(turn.attachments) == 1

    def test_clear_resets_slot(self):
        turn = make_turn(
            TurnRole.ASSISTANT,
            content="old",
            tool_name="t",
            tool_call_id="c",
            tool_log="log",
            error="boom",
            options=["a"],
        )
        turn.clear()

        assert turn.content == ""
        assert turn.tool_name is None
        assert turn.tool_call_id is None
        assert turn.tool_log == ""
        assert turn.error is None
        assert turn.options == []

    def test_user_message_includes_attachment_references(self):
        turn = make_turn(content="Summarise this")
        turn.attach(Attachment(path="/docs/a.pdf"))

        assert turn.to_model_message() == {
            "role": "user",
            "content": "Summarise this\nfile_path: /docs/a.pdf",
        }

    def test_dispatched_assistant_renders_tool_calls(self):
        turn = make_turn(
            TurnRole.ASSISTANT,
            tool_name="get_weather",
            tool_call_id="call_1",
            tool_arguments_raw='{"city": "Paris"}',
        )
        msg = turn.to_model_message()

        assert msg["role"] == "assistant"
        assert msg["content"] is None
        assert msg["tool_calls"][0]["id"] == "call_1"
        assert msg["tool_calls"][0]["function"] == {
            "name": "get_weather",
            "arguments": '{"city": "Paris"}',
        }

    def test_assistant_without_call_id_renders_as_text(self):
        turn = make_turn(TurnRole.ASSISTANT, content="hi", tool_name="get_weather")
        assert turn.to_model_message() == {"role": "assistant", "content": "hi"}

    def test_tool_turn_renders_as_tool_message(self):
        turn = make_turn(TurnRole.TOOL, content="Sunny", tool_call_id="call_1")
        assert turn.to_model_message() == {
            "role": "tool",
            "tool_call_id": "call_1",
            "content": "Sunny",
        }

    def test_choice_turn_lists_options(self):
        turn = make_turn(
            TurnRole.CHOICE,
            content="Which one?",
            tool_call_id="call_1",
            options=["Ann Lee", "Ann Smith"],
        )
        content = turn.to_model_message()["content"]

        assert content.startswith("Which one?\n- Ann Lee\n- Ann Smith")
        assert content.endswith("Awaiting the user's selection.")

    def test_role_serialized_as_value(self):
        dumped = make_turn(TurnRole.CHOICE).model_dump()
        assert dumped["role"] == "system-select"

    def test_to_markdown(self):
        assert make_turn(content="hi").to_markdown() == "**hi**"
        assert make_turn(TurnRole.ASSISTANT, content="yo").to_markdown() == "yo"
        assert make_turn(TurnRole.TOOL, content="x").to_markdown() == "**tool:** x"
