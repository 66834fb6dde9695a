"""
Batch fingerprinting of a product catalog.

Processes a directory of product images and writes:
    - fingerprints.npz: item ids and exact float64 fingerprints
    - faiss_fingerprint.index: FAISS index over the same fingerprints,
      used to narrow the candidate pool
    - catalog.json: per-item id, filename, name, category, price

Fingerprints are computed once here and never recomputed at query time.
Supports both small catalogs (FlatL2 exact search) and large ones
(IVFFlat approximate search with configurable clusters).
"""

import os
import json
import logging
from typing import List, Optional

import faiss
import numpy as np

from .fingerprint import extract_fingerprint, FINGERPRINT_DIM
from .preprocessing import load_image, ImageDecodeError, PixelBufferError

logger = logging.getLogger(__name__)

# Threshold for switching from exact to approximate FAISS index
IVF_THRESHOLD = int(os.environ.get("IVF_THRESHOLD", "1000"))

FAISS_INDEX_FILE = "faiss_fingerprint.index"
FINGERPRINTS_FILE = "fingerprints.npz"
CATALOG_FILE = "catalog.json"

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.webp'}


def _catalog_entries(image_dir: str, metadata_path: Optional[str]) -> List[dict]:
    if metadata_path and os.path.exists(metadata_path):
        with open(metadata_path, 'r', encoding='utf-8') as f:
            metadata = json.load(f)
        return [e for e in metadata if e.get('filename')]

    filenames = sorted(
        f for f in os.listdir(image_dir)
        if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS
    )
    return [{"filename": f} for f in filenames]


def build_faiss_index(vectors: np.ndarray) -> faiss.Index:
    """Build an exact or IVF index depending on catalog size."""
    vectors = np.ascontiguousarray(vectors, dtype=np.float32)
    count, dim = vectors.shape

    if count >= IVF_THRESHOLD:
        nlist = max(100, int(np.sqrt(count)))
        quantizer = faiss.IndexFlatL2(dim)
        index = faiss.IndexIVFFlat(quantizer, dim, nlist)
        index.train(vectors)
        index.add(vectors)
        logger.info(f"Built IVFFlat index: {nlist} clusters, {dim}d vectors")
    else:
        index = faiss.IndexFlatL2(dim)
        index.add(vectors)
        logger.info(f"Built FlatL2 index: {dim}d vectors")

    return index


def build_index(image_dir: str,
                output_dir: str,
                metadata_path: Optional[str] = None,
                seed: Optional[int] = None) -> dict:
    """
    Fingerprint every catalog image and write the search index.

    Args:
        image_dir: Directory containing product images.
        output_dir: Directory to write index files.
        metadata_path: Optional JSON list of entries with a 'filename'
            and optionally 'id', 'name', 'category', 'price'. If not
            provided, every image in image_dir becomes an item.
        seed: Seed for dominant-color clustering, applied to every image
            so an item's fingerprint does not depend on catalog order.

    Returns:
        Dict with 'success', 'processed', 'dimensions', 'errors' counts.
    """
    os.makedirs(output_dir, exist_ok=True)
    entries = _catalog_entries(image_dir, metadata_path)

    vectors = []
    catalog = []
    errors = 0

    logger.info(f"Building index from {len(entries)} images in {image_dir}")

    for i, entry in enumerate(entries):
        filename = entry['filename']
        filepath = os.path.join(image_dir, filename)
        if not os.path.exists(filepath):
            logger.warning(f"Missing image: {filename}")
            errors += 1
            continue

        try:
            image = load_image(filepath)
            fingerprint = extract_fingerprint(image, seed=seed)
        except (ImageDecodeError, PixelBufferError) as e:
            logger.warning(f"Failed to process {filename}: {e}")
            errors += 1
            continue

        vectors.append(fingerprint.vector)
        catalog.append({
            "id": str(entry.get("id") or os.path.splitext(filename)[0]),
            "filename": filename,
            "name": entry.get("name"),
            "category": entry.get("category") or "",
            "price": float(entry.get("price") or 0.0),
        })

        if (i + 1) % 500 == 0:
            logger.info(f"Processed {i + 1}/{len(entries)} images")

    if not vectors:
        return {"success": False, "error": "No valid images processed"}

    ids = [item["id"] for item in catalog]
    if len(set(ids)) != len(ids):
        return {"success": False, "error": "Duplicate catalog ids"}

    matrix = np.vstack(vectors)
    index = build_faiss_index(matrix)

    faiss_path = os.path.join(output_dir, FAISS_INDEX_FILE)
    faiss.write_index(index, faiss_path)

    np.savez_compressed(os.path.join(output_dir, FINGERPRINTS_FILE),
                        ids=np.array(ids), vectors=matrix)

    with open(os.path.join(output_dir, CATALOG_FILE), 'w', encoding='utf-8') as f:
        json.dump(catalog, f, indent=2)

    logger.info(
        f"Index built: {len(catalog)} items, {FINGERPRINT_DIM}d fingerprints, "
        f"{errors} errors"
    )

    return {
        "success": True,
        "processed": len(catalog),
        "dimensions": int(matrix.shape[1]),
        "errors": errors,
        "index_path": faiss_path,
    }
