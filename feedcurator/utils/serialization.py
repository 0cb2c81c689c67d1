import numpy as np


def vector_to_list(vec):
    """Convert a vector to a plain float list for JSON storage."""
    return [float(x) for x in np.asarray(vec, dtype=np.float32).ravel()]


def list_to_vector(data, dim=None):
    """Convert a stored JSON array back to a float32 numpy vector."""
    vec = np.asarray(data or [], dtype=np.float32)
    if dim is not None and vec.shape[0] != dim:
        raise ValueError(f"Stored vector has {vec.shape[0]} dims, expected {dim}")
    return vec
