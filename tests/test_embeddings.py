"""Tests for lorekeeper.learning.embeddings module."""

from __future__ import annotations

import numpy as np
import pytest

from lorekeeper.learning.embeddings import (
    EMBEDDING_DIM,
    calculate_centroid,
    cluster_by_similarity,
    cosine_similarity,
    embed,
    embed_batch,
    from_blob,
    similarity_matrix,
    to_blob,
)


class TestEmbed:
    """Tests for the hashed bag-of-words embedding."""

    def test_fixed_length(self):
        assert embed("implement login endpoint").shape == (EMBEDDING_DIM,)

    def test_deterministic(self):
        """Identical text yields identical vectors."""
        text = "Use connection pooling for the database layer"
        assert np.array_equal(embed(text), embed(text))

    def test_unit_norm(self):
        for text in ["a", "hello world", "Error: timeout while calling API", "!!!"]:
            assert np.linalg.norm(embed(text)) == pytest.approx(1.0, abs=1e-5)

    def test_empty_text_is_zero_vector(self):
        assert not embed("").any()
        assert not embed("   ").any()

    def test_case_insensitive(self):
        assert np.array_equal(embed("Redis Cache"), embed("redis cache"))

    def test_word_order_does_not_matter(self):
        assert np.allclose(embed("cache the query"), embed("query the cache"))

    def test_batch_preserves_order(self):
        texts = ["alpha beta", "gamma", ""]
        vectors = embed_batch(texts)
        assert len(vectors) == 3
        for text, vector in zip(texts, vectors, strict=True):
            assert np.array_equal(vector, embed(text))


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical_vectors(self):
        v = embed("retry with exponential backoff")
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_norm_returns_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError, match="same dimensions"):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    def test_shared_words_raise_similarity(self):
        base = embed("validate jwt token in auth middleware")
        close = embed("validate jwt token in auth handler")
        far = embed("render chart with canvas")
        assert cosine_similarity(base, close) > cosine_similarity(base, far)


class TestCentroid:
    """Tests for calculate_centroid."""

    def test_centroid_is_normalized(self):
        centroid = calculate_centroid([embed("one two"), embed("three four")])
        assert np.linalg.norm(centroid) == pytest.approx(1.0, abs=1e-5)

    def test_centroid_of_single_vector(self):
        v = embed("single")
        assert np.allclose(calculate_centroid([v]), v)

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            calculate_centroid([])


class TestClustering:
    """Tests for similarity clustering."""

    def test_similarity_matrix_diagonal(self):
        matrix = similarity_matrix([embed("a b"), embed("c d")])
        assert matrix.shape == (2, 2)
        assert matrix[0, 0] == pytest.approx(1.0)

    def test_similarity_matrix_empty(self):
        assert similarity_matrix([]).shape == (0, 0)

    def test_groups_cover_every_index(self):
        vectors = [np.array([1.0, 0.0]), np.array([0.0, 1.0]), np.array([1.0, 0.01])]
        groups = cluster_by_similarity(vectors, 0.9)
        assert groups == [[0, 2], [1]]

    def test_transitive_chain_forms_one_group(self):
        """a~b and b~c put a and c together even when a and c are not close."""
        a = np.array([1.0, 0.0])
        b = np.array([np.cos(0.4), np.sin(0.4)])
        c = np.array([np.cos(0.8), np.sin(0.8)])
        assert cosine_similarity(a, c) < 0.9
        assert cluster_by_similarity([a, b, c], 0.9) == [[0, 1, 2]]

    def test_zero_vectors_stay_apart(self):
        zero = np.zeros(2)
        assert cluster_by_similarity([zero, zero], 0.5) == [[0], [1]]

    def test_empty_input(self):
        assert cluster_by_similarity([], 0.5) == []


class TestBlobRoundTrip:
    """Tests for BLOB serialization."""

    def test_round_trip(self):
        v = embed("persist me")
        restored = from_blob(to_blob(v))
        assert restored is not None
        assert restored.dtype == np.float32
        assert np.array_equal(restored, v)

    def test_none_blob(self):
        assert from_blob(None) is None
