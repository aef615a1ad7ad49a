"""
数据存储模块

- 内容目录：每张图片一个文件（列出、按名称删除）
- 运行报告：每次运行结束时写入一次的 JSON 文件
"""
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from loguru import logger

from core.models import RunReport, StoredImage


class ImageStore:
    """内容目录管理器"""

    def __init__(self, images_dir: Path):
        self.images_dir = Path(images_dir)

    def ensure(self):
        self.images_dir.mkdir(parents=True, exist_ok=True)

    def list_images(self) -> List[StoredImage]:
        """列出已保存的图片（按修改时间倒序）"""
        self.ensure()
        images = []
        for entry in self.images_dir.iterdir():
            if not entry.is_file() or entry.name.endswith('.part'):
                continue
            stat = entry.stat()
            images.append(StoredImage(
                name=entry.name,
                size_bytes=stat.st_size,
                mtime=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(timespec='milliseconds'),
            ))
        images.sort(key=lambda image: image.mtime, reverse=True)
        return images

    @staticmethod
    def safe_image_name(raw: Any) -> Optional[str]:
        """
        校验图片名称

        只接受不含路径成分的文件名；空值、"."、".."、带目录的名称返回 None。
        """
        if raw is None:
            return None
        trimmed = str(raw).strip()
        if not trimmed:
            return None
        normalized = Path(trimmed).name
        if not normalized or normalized in ('.', '..'):
            return None
        if normalized != trimmed or '\\' in trimmed:
            return None
        return normalized

    def delete_image(self, raw_name: Any) -> Dict[str, Any]:
        """
        删除单张图片

        Returns:
            {"ok": bool, "name": str, "error": str（失败时）}
        """
        name = self.safe_image_name(raw_name)
        if not name:
            return {"ok": False, "name": raw_name, "error": "invalid file name"}

        path = self.images_dir / name
        try:
            path.unlink()
        except FileNotFoundError:
            return {"ok": False, "name": name, "error": "file not found"}
        except OSError as e:
            logger.error(f"❌ 删除失败 {name}: {e}")
            return {"ok": False, "name": name, "error": str(e)}

        logger.info(f"🗑️  已删除: {name}")
        return {"ok": True, "name": name}

    def delete_batch(self, names: Iterable[Any]) -> Dict[str, Any]:
        """批量删除（重复名称只处理一次，按顺序逐个删除）"""
        unique = []
        for raw in names:
            name = str(raw).strip()
            if name and name not in unique:
                unique.append(name)

        results = [self.delete_image(name) for name in unique]
        deleted = sum(1 for result in results if result["ok"])
        failed = len(results) - deleted
        return {
            "ok": failed == 0,
            "deleted": deleted,
            "failed": failed,
            "results": results,
        }


class ReportStore:
    """运行报告读写"""

    def __init__(self, report_path: Path):
        self.report_path = Path(report_path)

    def write(self, report: RunReport):
        self.report_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.report_path, 'w', encoding='utf-8') as f:
            json.dump(report.model_dump(mode='json'), f, ensure_ascii=False, indent=2)
        logger.info(f"📝 报告已写入: {self.report_path}")

    def read(self) -> Optional[Dict[str, Any]]:
        """读取报告；文件不存在或内容损坏时返回 None"""
        try:
            with open(self.report_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️  报告读取失败: {e}")
            return None
