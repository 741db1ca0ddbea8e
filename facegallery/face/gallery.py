from __future__ import annotations

import pickle

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from facegallery.config import ACCEPTED_FORMATS, GALLERY_CACHE_FILENAME
from facegallery.exceptions import EmptyGallery, InvalidImage
from facegallery.face.detector import MultiScaleDetector
from facegallery.face.embedding import EmbeddingExtractor
from facegallery.utils.image import is_supported_image, read_image
from facegallery.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class GalleryConfig:
    # Sample file extensions (lower-case, without dot).
    formats: FrozenSet[str] = field(default_factory=lambda: ACCEPTED_FORMATS)
    # File name for persisted gallery.
    filename: str = GALLERY_CACHE_FILENAME
    # Schema version to support future migrations.
    schema_version: str = "v1"


class Gallery(Mapping):
    """Subject name -> ordered embeddings harvested from that subject's samples.

    Read-only once built. Every subject maps to a non-empty list.
    """

    def __init__(self, subjects: Optional[Dict[str, Sequence[np.ndarray]]] = None):
        self._subjects: Dict[str, Tuple[np.ndarray, ...]] = {}
        for name, embs in (subjects or {}).items():
            if embs is None or len(embs) == 0:
                raise ValueError(f"Subject '{name}' has no embeddings")
            self._subjects[str(name)] = tuple(np.asarray(e, dtype=np.float32).reshape(-1) for e in embs)

    def __getitem__(self, name: str) -> Tuple[np.ndarray, ...]:
        return self._subjects[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._subjects)

    def __len__(self) -> int:
        return len(self._subjects)

    def __repr__(self) -> str:
        return f"Gallery(subjects={len(self)}, embeddings={self.embedding_count})"

    @property
    def subjects(self) -> List[str]:
        return list(self._subjects)

    @property
    def embedding_count(self) -> int:
        return sum(len(embs) for embs in self._subjects.values())

    @property
    def stats(self) -> Dict[str, dict]:
        return {name: {"count": len(embs)} for name, embs in self._subjects.items()}

    def save(self, gallery_dir: Path, embedder_id: str, config: Optional[GalleryConfig] = None) -> Path:
        config = config or GalleryConfig()
        gallery_dir = Path(gallery_dir)
        gallery_dir.mkdir(parents=True, exist_ok=True)
        fp = gallery_dir / config.filename
        data = {
            "schema_version": config.schema_version,
            "embedder": str(embedder_id),
            "subjects": {name: np.stack(embs, axis=0) for name, embs in self._subjects.items()},
        }
        with open(fp, "wb") as f:
            pickle.dump(data, f)
        return fp

    @classmethod
    def load(cls, gallery_dir: Path, embedder_id: str, config: Optional[GalleryConfig] = None) -> Optional["Gallery"]:
        """Load a cached gallery; None when absent, corrupt, outdated, or built by another embedder."""
        config = config or GalleryConfig()
        fp = Path(gallery_dir) / config.filename
        if not fp.is_file():
            return None
        try:
            with open(fp, "rb") as f:
                data = pickle.load(f)
        except (pickle.UnpicklingError, EOFError) as e:
            logger.warning(f"Ignoring unreadable gallery cache {fp}: {e}")
            return None

        if not isinstance(data, dict) or data.get("schema_version") != config.schema_version:
            logger.warning(f"Ignoring gallery cache with unknown schema: {fp}")
            return None
        if data.get("embedder") != str(embedder_id):
            logger.info(f"Gallery cache {fp} was built with {data.get('embedder')}, rebuilding")
            return None

        subjects = {name: list(np.asarray(mat, dtype=np.float32)) for name, mat in (data.get("subjects") or {}).items()}
        subjects = {name: embs for name, embs in subjects.items() if embs}
        if not subjects:
            return None
        return cls(subjects)


class GalleryBuilder:
    """Builds a `Gallery` from a directory with one sub-directory per subject.

    ```
    known-faces/
    |-- alice/
    |   |-- 1.jpg
    |   `-- 2.png
    `-- bob/
        `-- 1.pgm
    ```

    Plain files at the root, empty sub-directories and unsupported extensions are
    ignored. Every face found in a sample contributes one embedding.
    """

    def __init__(
        self,
        detector: MultiScaleDetector,
        extractor: EmbeddingExtractor,
        config: Optional[GalleryConfig] = None,
    ):
        self.detector = detector
        self.extractor = extractor
        self.config = config or GalleryConfig()

    def sample_files(self, subject_dir: Path) -> List[Path]:
        return sorted(
            p for p in subject_dir.iterdir() if p.is_file() and is_supported_image(p, self.config.formats)
        )

    def build(self, root_dir) -> Gallery:
        root = Path(root_dir)
        if not root.is_dir():
            raise NotADirectoryError(f"Known faces directory is not a directory or does not exist: {root}")

        logger.info(f"开始构建图库: {root}")

        subjects: Dict[str, List[np.ndarray]] = {}
        embeddings: List[np.ndarray] = []
        total_images = 0
        used_images = 0

        try:
            for subject_dir in sorted(root.iterdir()):
                if not subject_dir.is_dir():
                    continue

                image_files = self.sample_files(subject_dir)
                if not image_files:
                    logger.debug(f"跳过 {subject_dir.name}: 没有支持的图像")
                    continue

                subject = subject_dir.name
                logger.info(f"处理 {subject}: {len(image_files)} 张图像")
                total_images += len(image_files)
                embeddings = []

                for img_file in image_files:
                    try:
                        image = read_image(img_file)
                    except InvalidImage as e:
                        logger.warning(f"无法读取图像，已跳过: {e}")
                        continue

                    regions = self.detector.detect(image)
                    if not regions:
                        logger.warning(f"在 {img_file} 中未检测到人脸")
                        continue

                    for region in regions:
                        embeddings.append(self.extractor.extract(image, region))
                    used_images += 1
                    logger.debug(f"  {img_file.name}: {len(regions)} faces")

                if embeddings:
                    subjects[subject] = embeddings
                    logger.info(f"  成功添加: {len(embeddings)} 个 embeddings")
                else:
                    logger.warning(f"  {subject} 没有可用的人脸图像")
        except BaseException:
            # all-or-nothing: drop everything harvested so far
            embeddings.clear()
            for embs in subjects.values():
                embs.clear()
            subjects.clear()
            raise

        if not subjects:
            raise EmptyGallery(f"No valid faces were parsed from {root}")

        gallery = Gallery(subjects)
        logger.info(
            f"图库构建完成: {len(gallery)} 个人, {gallery.embedding_count} 个 embeddings, "
            f"{used_images}/{total_images} 张图像"
        )
        return gallery
