"""Unit tests for decoding raw SSD tensors."""
import numpy as np
import pytest

from cardocr.core.box_decoder import (
    NUM_CLASSES, BoxDecoder, center_form_to_corner_form, decode_locations, rearrange_layer_output,
    softmax_2d,
)
from cardocr.core.entities import DetectorOutput, FeatureMapSizes
from cardocr.core.exceptions import ContractViolationError
from cardocr.core.priors import combine_priors

from conftest import to_layer_order


class TestRearrangeLayerOutput:

    def test_hand_computed_permutation(self):
        """Layer 1x2 with 3 values per prior is transposed, layer 1x1 is unchanged."""
        feature_maps = FeatureMapSizes(1, 2, 1, 1)
        values = np.arange(9, dtype=np.float32)
        result = rearrange_layer_output(values, feature_maps, 1, 3)
        np.testing.assert_array_equal(result, [0, 2, 4, 1, 3, 5, 6, 7, 8])

    def test_output_position_formula(self):
        feature_maps = FeatureMapSizes(3, 4, 2, 2)
        total = 3 * 4 * 3 * 4
        values = np.arange(total + 2 * 2 * 3 * 4, dtype=np.float32)
        result = rearrange_layer_output(values, feature_maps, 3, 4)
        height = 4
        for s in range(height):
            for k in range(total // height):
                assert result[s * (total // height) + k] == values[k * height + s]

    def test_inverse_round_trip(self):
        feature_maps = FeatureMapSizes()
        values = np.random.default_rng(0).random(3420 * 4).astype(np.float32)
        layer_order = to_layer_order(values, feature_maps.layers(), 3, 4)
        np.testing.assert_array_equal(rearrange_layer_output(layer_order, feature_maps, 3, 4), values)

    def test_wrong_length_is_contract_violation(self):
        with pytest.raises(ContractViolationError):
            rearrange_layer_output(np.zeros(10), FeatureMapSizes(), 3, 4)


class TestDecodeLocations:

    def test_zero_offsets_reproduce_priors(self):
        priors = np.array([[0.5, 0.5, 0.2, 0.4]], dtype=np.float32)
        boxes = decode_locations(np.zeros((1, 4), dtype=np.float32), priors)
        np.testing.assert_allclose(boxes, priors)

    def test_variances_are_applied(self):
        priors = np.array([[0.5, 0.5, 0.2, 0.4]], dtype=np.float32)
        locations = np.array([[1.0, -1.0, 1.0, 0.0]], dtype=np.float32)
        boxes = decode_locations(locations, priors, center_variance=0.1, size_variance=0.2)
        np.testing.assert_allclose(boxes[0], [0.5 + 0.1 * 0.2, 0.5 - 0.1 * 0.4, np.exp(0.2) * 0.2, 0.4],
                                   rtol=1e-6)

    def test_shape_mismatch(self):
        with pytest.raises(ContractViolationError):
            decode_locations(np.zeros((2, 4)), np.zeros((3, 4)))

    def test_corner_form(self):
        corners = center_form_to_corner_form(np.array([[0.5, 0.5, 0.2, 0.4]], dtype=np.float32))
        np.testing.assert_allclose(corners[0], [0.4, 0.3, 0.6, 0.7], rtol=1e-6)


class TestSoftmax:

    def test_rows_sum_to_one(self):
        scores = softmax_2d(np.array([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]], dtype=np.float32))
        np.testing.assert_allclose(scores.sum(axis=1), [1.0, 1.0], rtol=1e-6)
        np.testing.assert_allclose(scores[1], [1 / 3] * 3, rtol=1e-6)
        assert scores.dtype == np.float32

    def test_ordering_is_preserved(self):
        scores = softmax_2d(np.array([[0.1, 5.0, -2.0]], dtype=np.float32))
        assert int(np.argmax(scores[0])) == 1

    def test_huge_logit_gives_nan(self):
        scores = softmax_2d(np.array([[1000.0, 0.0]]))
        assert np.isnan(scores[0, 0])
        assert scores[0, 1] == 0.0

    def test_single_precision_row_sum_overflows(self):
        # exps are finite in double precision, the float32 row sum is not
        scores = softmax_2d(np.array([[88.5, 88.5], [89.0, 0.0]]))
        np.testing.assert_array_equal(scores, [[0.0, 0.0], [0.0, 0.0]])

    def test_row_sum_just_below_overflow(self):
        scores = softmax_2d(np.array([[88.0, 88.0]]))
        np.testing.assert_allclose(scores, [[0.5, 0.5]], rtol=1e-6)


class TestBoxDecoder:

    def test_zero_tensors_decode_to_priors(self):
        decoder = BoxDecoder()
        output = DetectorOutput(np.zeros(3420 * 4, dtype=np.float32),
                                np.zeros(3420 * NUM_CLASSES, dtype=np.float32))
        decoded = decoder.decode(output)
        assert len(decoded) == 3420
        np.testing.assert_allclose(decoded.boxes, center_form_to_corner_form(combine_priors()), atol=1e-6)
        np.testing.assert_allclose(decoded.scores, 1.0 / NUM_CLASSES, rtol=1e-5)

    def test_logit_lands_on_its_prior(self):
        decoder = BoxDecoder()
        logits = np.zeros((3420, NUM_CLASSES), dtype=np.float32)
        logits[100, 4] = 10.0
        output = DetectorOutput(np.zeros(3420 * 4, dtype=np.float32),
                                to_layer_order(logits, FeatureMapSizes().layers(), 3, NUM_CLASSES))
        decoded = decoder.decode(output)
        assert int(np.argmax(decoded.scores[:, 4])) == 100
        assert decoded.scores[100, 4] > 0.99

    def test_wrong_logit_length(self):
        decoder = BoxDecoder()
        output = DetectorOutput(np.zeros(3420 * 4, dtype=np.float32), np.zeros(5, dtype=np.float32))
        with pytest.raises(ContractViolationError):
            decoder.decode(output)

    def test_bad_prior_table(self):
        with pytest.raises(ContractViolationError):
            BoxDecoder(priors=np.zeros((10, 4), dtype=np.float32))
