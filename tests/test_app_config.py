import unittest

from tutor_chat.app_config import parse_app_config, resolve_runtime_env


class ParseAppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({}, environ={})

        self.assertEqual("anthropic", app.provider_name)
        self.assertEqual(4096, app.max_tokens)
        self.assertEqual(0.7, app.temperature)
        self.assertIsNone(app.context_window)
        self.assertEqual(300.0, app.chat_inactivity_timeout_seconds)
        self.assertEqual(50, app.max_exchanges_per_chat)
        self.assertEqual(6, app.memory_agent_min_turns)
        self.assertEqual(3, app.memory_agent_window)
        self.assertEqual(3, app.retrieval_limit)
        self.assertEqual(0.4, app.retrieval_score_threshold)
        self.assertEqual(".tutor_chat/chats.db", app.chat_db_path)
        self.assertIsNone(app.qdrant_url)
        self.assertEqual("course_documents", app.qdrant_collection)
        self.assertFalse(app.developer_mode)
        self.assertEqual("local-user", app.user_id)
        self.assertIsNone(app.course_name)

    def test_ollama_gets_default_context_window(self) -> None:
        app = parse_app_config({"Provider": " Ollama ", "Model": "llama3"}, environ={})
        self.assertEqual("ollama", app.provider_name)
        self.assertEqual(32768, app.context_window)

        explicit = parse_app_config({"Provider": "ollama", "ContextWindow": 8192}, environ={})
        self.assertEqual(8192, explicit.context_window)

    def test_developer_mode_from_config_or_environment(self) -> None:
        self.assertTrue(parse_app_config({"DeveloperMode": "yes"}, environ={}).developer_mode)
        self.assertTrue(parse_app_config({}, environ={"DEVELOPING_MODE": "true"}).developer_mode)
        self.assertFalse(parse_app_config({}, environ={"DEVELOPING_MODE": "false"}).developer_mode)

    def test_blank_optional_strings_become_none(self) -> None:
        app = parse_app_config({"QdrantUrl": "  ", "CourseName": "", "ProviderBaseUrl": " "}, environ={})
        self.assertIsNone(app.qdrant_url)
        self.assertIsNone(app.course_name)
        self.assertIsNone(app.provider_base_url)


class RuntimeEnvTests(unittest.TestCase):
    def test_provider_key_follows_provider(self) -> None:
        environ = {"ANTHROPIC_API_KEY": "a-key", "OPENAI_API_KEY": "o-key", "QDRANT_API_KEY": "q-key"}

        anthropic_env = resolve_runtime_env("anthropic", environ)
        self.assertEqual("a-key", anthropic_env.provider_api_key)
        self.assertEqual("ANTHROPIC_API_KEY", anthropic_env.provider_env_var)
        self.assertEqual("q-key", anthropic_env.qdrant_api_key)

        ollama_env = resolve_runtime_env("ollama", environ)
        self.assertEqual("o-key", ollama_env.provider_api_key)
        self.assertEqual("OPENAI_API_KEY", ollama_env.provider_env_var)


if __name__ == "__main__":
    unittest.main()
