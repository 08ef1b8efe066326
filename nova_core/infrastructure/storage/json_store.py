import json
from pathlib import Path
from typing import Any, Dict, Optional, Type

from nova_core.config.settings import settings
from nova_core.domain.conversation import SnapshotStorage
from nova_core.domain.exceptions import BusinessError, MigrationError, PersistenceError


class JsonSnapshotStorage(SnapshotStorage):
    """把快照保存为单个 JSON 文件。

    写入直接覆盖目标文件（不经过临时文件），写入过程中崩溃可能损坏快照；
    读取端会把损坏的文件当作空存储处理。
    """

    def __init__(
        self,
        root: str | Path | None = None,
        store_file: Optional[str] = None,
        legacy_file: Optional[str] = None,
    ):
        self._root = Path(root or settings.storage_root).resolve()
        self.current_path = self._root / (store_file or settings.store_file)
        self.legacy_path = self._root / (legacy_file or settings.legacy_store_file)

    def read_current(self) -> Optional[Any]:
        return self._read(self.current_path, PersistenceError)

    def read_legacy(self) -> Optional[Any]:
        return self._read(self.legacy_path, MigrationError)

    def write_current(self, snapshot: Dict[str, Any]) -> None:
        try:
            text = json.dumps(snapshot, ensure_ascii=False, indent=2)
            self._root.mkdir(parents=True, exist_ok=True)
            self.current_path.write_text(text, encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(str(e), path=str(self.current_path))

    @staticmethod
    def _read(path: Path, error_cls: Type[BusinessError]) -> Optional[Any]:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise error_cls(str(e), path=str(path))
