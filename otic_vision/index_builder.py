"""
Batch registration of product images.

Walks a directory of product photos and registers each one through a
RecognitionOrchestrator, so a catalogue can be seeded without going
through the point-of-sale capture flow one product at a time.

Product metadata comes from an optional JSON list whose entries carry a
'filename' field plus any of 'product_id', 'brand_name',
'product_name' and 'price'. Without it every image in the directory is
registered with its file stem as the product name.
"""

import json
import logging
import os
from typing import Optional

import cv2

from .engine import RecognitionOrchestrator
from .errors import CorruptToken, InvalidInput, RegistrationConflict
from .models import PixelBuffer

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.webp'}
METADATA_FIELDS = ('product_id', 'brand_name', 'product_name', 'price')


def _load_entries(image_dir: str, metadata_path: Optional[str]) -> list:
    if metadata_path and os.path.exists(metadata_path):
        with open(metadata_path, 'r', encoding='utf-8') as f:
            metadata = json.load(f)
        return [e for e in metadata if e.get('filename')]

    return [
        {'filename': f, 'product_name': os.path.splitext(f)[0]}
        for f in sorted(os.listdir(image_dir))
        if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS
    ]


def register_directory(orchestrator: RecognitionOrchestrator,
                       image_dir: str,
                       metadata_path: Optional[str] = None) -> dict:
    """
    Register every product image in a directory.

    Args:
        orchestrator: Engine whose store receives the registrations.
        image_dir: Directory containing product images.
        metadata_path: Optional JSON metadata list (see module docstring).

    Returns:
        Dict with 'success', 'processed', 'errors', 'conflicts' counts
        and the registered 'product_ids' in order.

    Raises:
        StoreUnavailable, RecognitionTimeout: the store failed; a batch
            cannot continue without it.
    """
    entries = _load_entries(image_dir, metadata_path)
    product_ids = []
    errors = 0
    conflicts = 0

    logger.info(f"Registering {len(entries)} images from {image_dir}")

    for i, entry in enumerate(entries):
        filename = entry['filename']
        filepath = os.path.join(image_dir, filename)

        image = cv2.imread(filepath, cv2.IMREAD_COLOR)
        if image is None:
            logger.warning(f"Could not read: {filename}")
            errors += 1
            continue

        image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        metadata = {k: entry[k] for k in METADATA_FIELDS if k in entry}

        try:
            match = orchestrator.register_frame(PixelBuffer.from_array(image_rgb),
                                                **metadata)
        except RegistrationConflict as e:
            logger.warning(f"Skipping {filename}: {e}")
            conflicts += 1
            continue
        except (InvalidInput, CorruptToken) as e:
            logger.warning(f"Failed to register {filename}: {e}")
            errors += 1
            continue

        product_ids.append(match.product_id)

        if (i + 1) % 500 == 0:
            logger.info(f"Processed {i + 1}/{len(entries)} images")

    logger.info(
        f"Registration done: {len(product_ids)} registered, "
        f"{conflicts} conflicts, {errors} errors"
    )

    return {
        "success": bool(product_ids),
        "processed": len(product_ids),
        "errors": errors,
        "conflicts": conflicts,
        "product_ids": product_ids,
    }
