# tests/unit/test_payload.py

import base64

import pytest

from pyenrich.exceptions import ConfigurationError, ReadError
from pyenrich.payload import (
    OllamaChatAdapter,
    OpenAIChatAdapter,
    RequestBuilder,
    encode_image,
    get_adapter,
    mime_type_for,
    redact_payload,
)
from tests.conftest import API_URL, LABEL_SCHEMA, MODEL, make_task


class TestEncodeImage:
    def test_encodes_file_bytes(self, image_dir):
        task = make_task(image_dir / "cat.jpg")
        encoded = encode_image(task)

        assert base64.b64decode(encoded) == (image_dir / "cat.jpg").read_bytes()

    def test_missing_file_raises_read_error(self, tmp_path):
        task = make_task(tmp_path / "gone.jpg")

        with pytest.raises(ReadError) as exc_info:
            encode_image(task)

        assert exc_info.value.stage == "read"
        assert exc_info.value.image == str(tmp_path / "gone.jpg")


class TestOllamaPayload:
    """Test the Ollama /api/chat request body."""

    def test_minimal_payload(self):
        payload = OllamaChatAdapter().build_payload(
            model=MODEL, prompt="Describe", image_b64="QUJD", mime_type="image/png"
        )

        assert payload == {
            "model": MODEL,
            "messages": [{"role": "user", "content": "Describe", "images": ["QUJD"]}],
            "stream": False,
        }

    def test_schema_and_options(self):
        options = {"temperature": 0, "num_ctx": 8192}
        payload = OllamaChatAdapter().build_payload(
            model=MODEL,
            prompt="Describe",
            image_b64="QUJD",
            mime_type="image/png",
            schema=LABEL_SCHEMA,
            options=options,
        )

        assert payload["format"] == LABEL_SCHEMA
        assert payload["options"] == options

    @pytest.mark.parametrize(
        "body, expected",
        [
            ({"message": {"role": "assistant", "content": "a cat"}}, "a cat"),
            ({"messages": [{"content": "first"}, {"content": "second"}]}, "first"),
            ({"messages": []}, ""),
            ({"message": {"role": "assistant"}}, ""),
            ({"response": "legacy"}, {"response": "legacy"}),
        ],
    )
    def test_extract_content(self, body, expected):
        assert OllamaChatAdapter().extract_content(body) == expected

    def test_extract_usage(self):
        adapter = OllamaChatAdapter()
        body = {"prompt_eval_count": 30, "eval_count": 7, "total_duration": 123}

        assert adapter.extract_usage(body) == {
            "prompt_tokens": 30,
            "completion_tokens": 7,
            "total_duration_ns": 123,
        }
        assert adapter.extract_usage({"message": {}}) is None


class TestOpenAIPayload:
    def test_payload_shape(self):
        payload = OpenAIChatAdapter().build_payload(
            model="gpt-4o-mini",
            prompt="Describe",
            image_b64="QUJD",
            mime_type="image/jpeg",
            schema=LABEL_SCHEMA,
            options={"temperature": 0.2, "model": "ignored"},
        )

        content = payload["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "Describe"}
        assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,QUJD"
        assert payload["response_format"]["json_schema"]["schema"] == LABEL_SCHEMA
        assert payload["temperature"] == 0.2
        # Options never override fields we set
        assert payload["model"] == "gpt-4o-mini"

    def test_extract_content_and_usage(self):
        body = {
            "choices": [{"message": {"role": "assistant", "content": '{"label": "cat"}'}}],
            "usage": {"prompt_tokens": 100, "completion_tokens": 9, "total_tokens": 109},
        }
        adapter = OpenAIChatAdapter()

        assert adapter.extract_content(body) == '{"label": "cat"}'
        assert adapter.extract_usage(body) == {"prompt_tokens": 100, "completion_tokens": 9}
        assert adapter.extract_usage({"choices": []}) is None


class TestAdapters:
    def test_get_adapter(self):
        assert isinstance(get_adapter("ollama"), OllamaChatAdapter)
        assert isinstance(get_adapter("openai"), OpenAIChatAdapter)

    def test_unknown_adapter(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_adapter("grpc")
        assert "Unknown API format" in str(exc_info.value)

    @pytest.mark.parametrize(
        "extension, expected",
        [("jpg", "image/jpeg"), ("JPEG", "image/jpeg"), ("png", "image/png"), ("webp", "image/webp")],
    )
    def test_mime_type_for(self, extension, expected):
        assert mime_type_for(extension) == expected

    def test_redact_payload(self):
        payload = {
            "messages": [
                {"images": ["A" * 40]},
                {"content": [{"image_url": {"url": "data:image/png;base64," + "B" * 12}}]},
            ],
            "model": MODEL,
        }

        redacted = redact_payload(payload)

        assert redacted["messages"][0]["images"] == ["<40 base64 chars>"]
        url = redacted["messages"][1]["content"][0]["image_url"]["url"]
        assert url == "data:image/png;base64,<12 base64 chars>"
        assert redacted["model"] == MODEL
        # Original untouched
        assert payload["messages"][0]["images"] == ["A" * 40]


class TestRequestBuilder:
    def _builder(self, prompt="What do you see in this image?", **kwargs):
        return RequestBuilder(
            url=API_URL,
            model=MODEL,
            prompt=prompt,
            adapter=OllamaChatAdapter(),
            **kwargs,
        )

    def test_build_request(self, image_dir):
        task = make_task(image_dir / "cat.jpg")
        request = self._builder(schema=LABEL_SCHEMA).build(task, "QUJD")

        assert request.image == task
        assert request.url == API_URL
        assert request.model == MODEL
        message = request.payload["messages"][0]
        assert message["content"] == "What do you see in this image?"
        assert message["images"] == ["QUJD"]
        assert request.payload["format"] == LABEL_SCHEMA

    @pytest.mark.parametrize(
        "prompt",
        [
            "Describe the {{ subject }} in this image",
            'Reply like {{"label": "..."}}',
            "Count the items {# and list them",
            "{% raw %} and {{ filename",
        ],
    )
    def test_prompt_is_sent_verbatim(self, image_dir, prompt):
        task = make_task(image_dir / "cat.jpg")

        request = self._builder(prompt).build(task, "QUJD")

        assert request.payload["messages"][0]["content"] == prompt

    def test_prompt_template_variables(self, image_dir):
        task = make_task(image_dir / "dog.PNG")
        builder = self._builder(
            "Describe {{ filename }} ({{ stem }}, {{ extension }})", templated=True
        )

        assert builder.render_prompt(task) == "Describe dog.PNG (dog, png)"

    def test_invalid_template(self):
        with pytest.raises(ConfigurationError) as exc_info:
            self._builder("Describe {{ filename", templated=True)
        assert "Invalid prompt template" in str(exc_info.value)
