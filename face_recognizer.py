"""命令行入口：用图库识别一张图像中的人脸。

示例：
    python face_recognizer.py data/group.jpg --gallery data/known-faces -o output_group.jpg
"""

from __future__ import annotations

import argparse
import sys

from facegallery.config import DEFAULT_DETECTOR_MODEL, DEFAULT_RECOGNIZER_MODEL, MatchPolicy, RecognizerConfig
from facegallery.exceptions import FaceGalleryError
from facegallery.face.recognizer import FaceRecognizer
from facegallery.utils.log import get_logger, set_verbose

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="多尺度人脸检测 + 图库身份识别")
    parser.add_argument("image", help="待识别图像路径")
    parser.add_argument("--gallery", "-g", default="data/known-faces", help="图库路径（每个子目录一个人）")
    parser.add_argument("--output", "-o", default=None, help="输出带标注图像路径")
    parser.add_argument("--backend", choices=["opencv", "insightface"], default="opencv", help="检测/识别后端")
    parser.add_argument("--detector-model", default=DEFAULT_DETECTOR_MODEL, help="YuNet 模型路径")
    parser.add_argument("--recognizer-model", default=DEFAULT_RECOGNIZER_MODEL, help="SFace 模型路径")
    parser.add_argument("--insightface-model", default="buffalo_l", help="InsightFace 模型包名称")
    parser.add_argument("--device", choices=["auto", "cpu", "gpu"], default="auto", help="InsightFace 计算设备")
    parser.add_argument("--threshold", "-t", type=float, default=None, help="覆盖识别阈值（默认 0.363）")
    parser.add_argument(
        "--dedupe-iou",
        type=float,
        default=None,
        help="对多尺度检测结果做 IoU 去重（例如 0.3）；默认不去重",
    )
    parser.add_argument(
        "--unique-subjects",
        action="store_true",
        help="每个身份最多标注一个人脸（取得分最高者）",
    )
    parser.add_argument("--use-cache", action="store_true", help="加载/保存图库 embedding 缓存")
    parser.add_argument("--verbose", "-v", action="store_true", help="输出调试日志")
    return parser


def config_from_args(args: argparse.Namespace) -> RecognizerConfig:
    config = RecognizerConfig(
        backend=args.backend,
        detector_model_path=args.detector_model,
        recognizer_model_path=args.recognizer_model,
        insightface_model=args.insightface_model,
        device=args.device,
        dedupe_iou=args.dedupe_iou,
        match_policy=MatchPolicy.UNIQUE_SUBJECT if args.unique_subjects else MatchPolicy.PER_REGION,
    )
    if args.threshold is not None:
        config.threshold = float(args.threshold)
    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    set_verbose(args.verbose)

    try:
        with FaceRecognizer(config_from_args(args)) as recognizer:
            gallery = recognizer.build_gallery(args.gallery, use_cache=args.use_cache)
            _, results = recognizer.process(args.image, gallery, output_path=args.output)
    except (FaceGalleryError, OSError) as e:
        logger.error(f"识别失败: {e}")
        return 1

    logger.info(f"识别到 {len(results)} 个已知人脸")
    return 0


if __name__ == "__main__":
    sys.exit(main())
