"""
Tesseract OCR backend.

Runs pytesseract on the ROI image and regroups its word boxes into
lines using Tesseract's own (block, paragraph, line) segmentation.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import List, Dict, Any, Tuple
from PIL import Image
import pytesseract
from loguru import logger

from chatguard.core.contracts import CaptureResult, OCRLine, BoundingBox
from chatguard.core.errors import RecognitionError
from chatguard.recognition.base import BaseTextRecognizer


class TesseractTextRecognizer(BaseTextRecognizer):
    """
    OCR via the Tesseract binary.

    Words with a confidence below min_confidence are dropped; a line's
    confidence is the mean of its word confidences.
    """

    def __init__(self, language: str = "kor+eng", min_confidence: float = 0.0):
        """
        Args:
            language: Tesseract language codes (e.g. "kor+eng")
            min_confidence: Word confidence floor in [0, 1]
        """
        self.language = language
        self.min_confidence = min_confidence

    def start(self) -> bool:
        try:
            version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError:
            logger.error("Tesseract binary not found, OCR disabled")
            return False
        logger.info(f"Tesseract {version} ready ({self.language})")
        return True

    def recognize(self, capture: CaptureResult) -> List[OCRLine]:
        if capture.width <= 0 or capture.height <= 0:
            return []

        image = Image.fromarray(capture.image)
        try:
            data = pytesseract.image_to_data(
                image, lang=self.language, output_type=pytesseract.Output.DICT
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise RecognitionError(f"Tesseract failed: {e}") from e

        return group_words_into_lines(data, self.min_confidence)


def group_words_into_lines(data: Dict[str, Any], min_confidence: float = 0.0) -> List[OCRLine]:
    """
    Build OCRLines from a pytesseract image_to_data dict.

    Lines are keyed by (block_num, par_num, line_num) and keep the order
    in which Tesseract first reports them.
    """
    lines: "OrderedDict[Tuple[int, int, int], Dict[str, Any]]" = OrderedDict()
    count = len(data.get("text", []))

    for i in range(count):
        text = str(data["text"][i] or "").strip()
        if not text:
            continue

        try:
            conf = float(data.get("conf", [0] * count)[i]) / 100.0
        except (TypeError, ValueError):
            conf = 0.0
        # Tesseract reports -1 for non-word entries
        if conf < 0 or conf < min_confidence:
            continue

        box = BoundingBox(
            x=int(data["left"][i]),
            y=int(data["top"][i]),
            width=int(data["width"][i]),
            height=int(data["height"][i]),
        )
        key = (
            int(data.get("block_num", [0] * count)[i]),
            int(data.get("par_num", [0] * count)[i]),
            int(data.get("line_num", [0] * count)[i]),
        )

        line = lines.get(key)
        if line is None:
            lines[key] = {"words": [text], "bbox": box, "confs": [conf]}
        else:
            line["words"].append(text)
            line["bbox"] = line["bbox"].union(box)
            line["confs"].append(conf)

    return [
        OCRLine(
            text=" ".join(line["words"]),
            bbox=line["bbox"],
            confidence=sum(line["confs"]) / len(line["confs"]),
        )
        for line in lines.values()
    ]
