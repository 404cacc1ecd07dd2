from intakegenie.transcript import from_provider_messages, to_plain_text


class TestToPlainText:
    def test_basic_conversation(self):
        history = [
            {"role": "agent", "content": "Thank you for calling Smith Jones Law."},
            {"role": "caller", "content": "I was in a car accident."},
            {"role": "agent", "content": "I'm sorry to hear that."},
        ]
        assert to_plain_text(history) == (
            "Agent: Thank you for calling Smith Jones Law.\n"
            "Caller: I was in a car accident.\n"
            "Agent: I'm sorry to hear that."
        )

    def test_empty(self):
        assert to_plain_text([]) == ""
        assert to_plain_text(None) == ""

    def test_other_roles_dropped(self):
        history = [{"role": "system", "content": "x"}, {"role": "caller", "content": "Hello"}]
        assert to_plain_text(history) == "Caller: Hello"


class TestFromProviderMessages:
    def test_role_mapping(self):
        messages = [
            {"role": "system", "message": "You are an assistant"},
            {"role": "bot", "message": "Hi, how can I help?"},
            {"role": "customer", "message": "I need a lawyer"},
            {"role": "assistant", "content": "Sure."},
            {"role": "user", "content": ""},
        ]
        assert from_provider_messages(messages) == [
            {"role": "agent", "content": "Hi, how can I help?"},
            {"role": "caller", "content": "I need a lawyer"},
            {"role": "agent", "content": "Sure."},
        ]
