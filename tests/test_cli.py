import json
from pathlib import Path

from openpyxl import load_workbook

from inventory_suite.cli import main as cli_main
from inventory_suite.inventory.db import InventoryDatabase
from inventory_suite.inventory.service import InventoryService


def test_init_and_rate_commands(tmp_path: Path, capsys) -> None:
    db_file = tmp_path / "cli.sqlite3"

    assert cli_main.main(["--db", str(db_file), "init"]) == 0
    assert db_file.exists()

    assert cli_main.main(["--db", str(db_file), "rate", "--set", "3.5"]) == 0
    assert cli_main.main(["--db", str(db_file), "rate"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[-2:] == ["3.5", "3.5"]


def test_export_command_writes_workbook(tmp_path: Path) -> None:
    db_file = tmp_path / "cli.sqlite3"
    service = InventoryService(InventoryDatabase(str(db_file)))
    bill_no = service.create_bill({"vendor_name": "Acme", "created_on": "2024-01-01"})["bill_no"]
    service.add_bill_item(bill_no, {"name": "Rice", "price": 2, "quantity": 1})
    target = tmp_path / "export.xlsx"

    assert cli_main.main(["--db", str(db_file), "export", "--sheet", "purchases", "--output", str(target)]) == 0

    wb = load_workbook(target)
    assert wb.sheetnames == ["Purchases"]
    assert wb["Purchases"]["A2"].value == "Rice"


def test_chat_command_prints_rows(tmp_path: Path, monkeypatch, capsys) -> None:
    db_file = tmp_path / "cli.sqlite3"
    InventoryService(InventoryDatabase(str(db_file))).create_base_item({"name": "Oil", "brand": "Sun"})

    class _FakeChatClient:
        def complete(self, prompt: str) -> str:
            return "<sql>SELECT name, brand FROM base_items</sql>"

        def close(self) -> None:
            pass

    monkeypatch.setenv("LLM_BACKEND", "groq")
    monkeypatch.setenv("GROQ_API_KEY", "key")
    monkeypatch.setattr("inventory_suite.inventory.chat.build_chat_client", lambda cfg: _FakeChatClient())

    assert cli_main.main(["--db", str(db_file), "chat", "--sheet", "base", "which brands?"]) == 0

    printed = json.loads(capsys.readouterr().out)
    assert printed["rows"] == [{"name": "Oil", "brand": "Sun"}]
    assert printed["sql"].endswith("ORDER BY created_on DESC LIMIT 100")


def test_rate_command_rejects_bad_value(tmp_path: Path, capsys) -> None:
    db_file = tmp_path / "cli.sqlite3"

    assert cli_main.main(["--db", str(db_file), "rate", "--set", "abc"]) == 2
    assert cli_main.main(["--db", str(db_file), "rate", "--set", "inf"]) == 2
    assert cli_main.main(["--db", str(db_file), "rate"]) == 0
    assert capsys.readouterr().out.splitlines() == ["1.0"]


def test_chat_command_reports_unusable_reply(tmp_path: Path, monkeypatch, capsys) -> None:
    db_file = tmp_path / "cli.sqlite3"

    class _RefusingClient:
        def complete(self, prompt: str) -> str:
            return "<sql>SELECT * FROM settings</sql>"

        def close(self) -> None:
            pass

    monkeypatch.setenv("LLM_BACKEND", "groq")
    monkeypatch.setenv("GROQ_API_KEY", "key")
    monkeypatch.setattr("inventory_suite.inventory.chat.build_chat_client", lambda cfg: _RefusingClient())

    assert cli_main.main(["--db", str(db_file), "chat", "secrets?"]) == 1
    assert capsys.readouterr().out == ""


def test_chat_command_without_api_key(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("LLM_BACKEND", "groq")
    monkeypatch.setenv("GROQ_API_KEY", "")
    monkeypatch.chdir(tmp_path)

    assert cli_main.main(["--db", str(tmp_path / "cli.sqlite3"), "chat", "anything"]) == 2
