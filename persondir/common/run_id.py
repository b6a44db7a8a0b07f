from __future__ import annotations

import uuid


def generate_run_id() -> str:
    """
    Назначение:
        Сгенерировать run_id для одного запуска команды CLI.
        Попадает во все записи лога и в имя log-файла.
    """
    return uuid.uuid4().hex
