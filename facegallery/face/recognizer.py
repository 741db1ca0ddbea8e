from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from facegallery.config import MatchPolicy, RecognizerConfig
from facegallery.exceptions import InvalidDetectorOrEmbedder
from facegallery.face.backends import create_backends
from facegallery.face.backends.base import DetectorBackend, EmbedderBackend
from facegallery.face.detector import MultiScaleDetector
from facegallery.face.embedding import EmbeddingExtractor
from facegallery.face.gallery import Gallery, GalleryBuilder, GalleryConfig
from facegallery.face.matcher import IdentityMatcher, MatcherConfig
from facegallery.face.region import MatchResult, Region
from facegallery.utils.draw import draw_matches
from facegallery.utils.image import ensure_image, read_image
from facegallery.utils.log import get_logger

logger = get_logger(__name__)


class FaceRecognizer:
    """
    人脸识别会话：多尺度检测 + 图库构建 + 身份匹配。

    检测器与特征提取器是持有原生模型的资源，由本对象获取并在 `close()`
    （或 `with` 语句结束）时释放且仅释放一次。单线程使用，不要跨线程共享。

    用法：
        with FaceRecognizer(RecognizerConfig()) as recognizer:
            gallery = recognizer.build_gallery("data/known-faces")
            results = recognizer.recognize(image, gallery)
    """

    def __init__(
        self,
        config: Optional[RecognizerConfig] = None,
        detector: Optional[DetectorBackend] = None,
        embedder: Optional[EmbedderBackend] = None,
    ):
        """
        Args:
            config: 会话配置（模型路径、阈值、多尺度参数）
            detector: 可选，外部提供的检测器后端（须与 embedder 同时提供）
            embedder: 可选，外部提供的特征提取后端
        """
        self.config = config or RecognizerConfig()

        if (detector is None) != (embedder is None):
            raise ValueError("detector and embedder must be passed together")
        if detector is None:
            detector, embedder = create_backends(self.config)
        self._detector_backend = detector
        self._embedder_backend = embedder
        self._closed = False

        self.detector = MultiScaleDetector(
            detector,
            window=self.config.detection_window,
            scale_step=self.config.scale_step,
            min_scale=self.config.min_scale,
            dedupe_iou=self.config.dedupe_iou,
        )
        self.extractor = EmbeddingExtractor(embedder)
        self.matcher = IdentityMatcher(
            embedder.similarity,
            MatcherConfig(threshold=float(self.config.threshold), policy=MatchPolicy(self.config.match_policy)),
        )
        self.gallery_config = GalleryConfig(filename=self.config.gallery_cache_filename)
        self.builder = GalleryBuilder(self.detector, self.extractor, self.gallery_config)

    def close(self) -> None:
        """释放检测器与特征提取器（幂等）。"""
        if self._closed:
            return
        self._closed = True
        try:
            self._detector_backend.close()
        finally:
            self._embedder_backend.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _require_open(self) -> None:
        if self._closed:
            raise InvalidDetectorOrEmbedder("FaceRecognizer has been closed")

    def detect_faces(self, image: np.ndarray) -> List[Region]:
        """从图像中检测人脸（多尺度，坐标为原图坐标）"""
        self._require_open()
        return self.detector.detect(image)

    def extract_embeddings(self, image: np.ndarray, regions: Sequence[Region]) -> List[Tuple[Region, np.ndarray]]:
        self._require_open()
        regions = list(regions)
        return list(zip(regions, self.extractor.extract_all(image, regions)))

    def build_gallery(self, gallery_path: Union[str, Path], use_cache: bool = False) -> Gallery:
        """
        构建图库

        Args:
            gallery_path: 图库路径，每个子目录对应一个人，目录名即身份
            use_cache: 是否优先加载/写入图库目录下的 embedding 缓存
        """
        self._require_open()
        gallery_path = Path(gallery_path)
        embedder_id = self._embedder_backend.identifier

        if use_cache:
            cached = Gallery.load(gallery_path, embedder_id, self.gallery_config)
            if cached is not None:
                logger.info(f"已加载图库缓存: {len(cached)} 个人, {cached.embedding_count} 个 embeddings")
                return cached

        gallery = self.builder.build(gallery_path)

        if use_cache:
            fp = gallery.save(gallery_path, embedder_id, self.gallery_config)
            logger.info(f"图库缓存已保存至: {fp}")
        return gallery

    def recognize(self, image: np.ndarray, gallery: Gallery) -> List[MatchResult]:
        """检测并识别图像中的人脸，返回达到阈值的匹配结果"""
        self._require_open()
        image = ensure_image(image)
        regions = self.detector.detect(image)
        if not regions:
            return []
        probes = self.extract_embeddings(image, regions)
        return self.matcher.identify_all(probes, gallery)

    def process(
        self,
        image_path: Union[str, Path],
        gallery: Gallery,
        output_path: Optional[Union[str, Path]] = None,
    ) -> Tuple[np.ndarray, List[MatchResult]]:
        """
        人脸识别并绘制结果

        Args:
            image_path: 输入图像路径
            gallery: 已构建的图库
            output_path: 输出图像路径（可选）

        Returns:
            result_image: 带标注的结果图像
            results: 识别结果列表
        """
        image = read_image(image_path)
        results = self.recognize(image, gallery)

        if not results:
            logger.warning(f"在 {image_path} 中未识别到已知人脸")

        for i, result in enumerate(results):
            logger.info(f"人脸 {i + 1}: {result.label} (相似度: {result.score:.4f}) bbox={result.region.bbox}")

        result_image = draw_matches(image, results)
        if output_path:
            if not cv2.imwrite(str(output_path), result_image):
                raise OSError(f"Failed to write result image: {output_path}")
            logger.info(f"结果图像已保存至: {output_path}")

        return result_image, results
