"""Document loading and segmentation."""
