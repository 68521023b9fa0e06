import logging

from mcpbridge.repair import repair_arguments


def test_format_code_from_fence():
    message = "Please format this:\n```javascript\nconst x=1;let y=2\n```"
    assert repair_arguments("format_code", message) == {
        "code": "const x=1;let y=2",
        "language": "javascript",
    }


def test_format_code_language_from_prose():
    message = "Format my python code: def f( a ):return a"
    assert repair_arguments("format_code", message) == {
        "code": "def f( a ):return a",
        "language": "python",
    }


def test_format_code_nothing_to_extract():
    assert repair_arguments("format_code", "format something for me") == {}


def test_generate_documentation_uses_code_extractor():
    message = "Document this ```ts\nfunction add(a, b) { return a + b }\n```"
    args = repair_arguments("generate_documentation", message)
    assert args["language"] == "typescript"
    assert args["code"].startswith("function add")


def test_read_file_path():
    assert repair_arguments("read_file", "show me src/server/index.ts please") == {
        "filePath": "src/server/index.ts",
    }


def test_list_project_files_pattern():
    assert repair_arguments("list_project_files", "list files matching `**/*.py`") == {
        "pattern": "**/*.py",
    }


def test_unknown_tool_gets_nothing():
    assert repair_arguments("deploy_service", "deploy src/app.ts") == {}


def test_repair_is_logged(caplog):
    with caplog.at_level(logging.WARNING):
        repair_arguments("read_file", "open README.md")
    assert "Repaired empty arguments for read_file" in caplog.text
