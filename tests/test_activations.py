"""
test_activations.py
~~~~~~~~~~~~~~~~~~~

Unit tests for hidden activations and the softmax/cross-entropy output head.
"""

import math

import pytest

from nnengine.activations import ReLU, Sigmoid, Tanh, Custom, get_activation
from nnengine.exceptions import InvalidConfig, NNEngineError, UnknownActivation
from nnengine.matrix import Matrix
from nnengine.output_head import softmax, cross_entropy_loss


@pytest.mark.unit
class TestActivations:
    """Test the builtin activation variants."""

    def test_relu(self):
        relu = ReLU()
        assert relu.forward(-2.0) == 0.0
        assert relu.forward(3.5) == 3.5
        assert relu.derivative(-1.0) == 0.0
        assert relu.derivative(0.1) == 1.0

    def test_relu_derivative_at_zero_is_zero(self):
        assert ReLU().derivative(0.0) == 0.0

    def test_sigmoid(self):
        sigmoid = Sigmoid()
        assert sigmoid.forward(0.0) == 0.5
        assert sigmoid.derivative(0.0) == 0.25

    def test_sigmoid_clamps_large_inputs(self):
        sigmoid = Sigmoid()
        assert sigmoid.forward(-1e6) == sigmoid.forward(-500.0)
        assert sigmoid.forward(1e6) == pytest.approx(1.0)
        assert 0.0 <= sigmoid.derivative(-1e6) < 1e-200

    def test_tanh(self):
        tanh = Tanh()
        assert tanh.forward(0.5) == pytest.approx(math.tanh(0.5))
        assert tanh.derivative(0.0) == 1.0
        assert tanh.derivative(0.5) == pytest.approx(1 - math.tanh(0.5) ** 2)

    def test_get_activation_by_name(self):
        assert isinstance(get_activation('relu'), ReLU)
        assert isinstance(get_activation('sigmoid'), Sigmoid)
        assert isinstance(get_activation('tanh'), Tanh)

    def test_get_activation_passes_instances_through(self):
        custom = Custom('square', lambda x: x * x, lambda x: 2 * x)
        assert get_activation(custom) is custom

    def test_unknown_activation(self):
        with pytest.raises(UnknownActivation) as exc_info:
            get_activation('softplus')
        assert 'softplus' in str(exc_info.value)

    def test_custom_activation(self):
        leaky = Custom('leaky_relu', lambda x: x if x > 0 else 0.01 * x,
                       lambda x: 1.0 if x > 0 else 0.01)
        assert leaky.name == 'leaky_relu'
        assert leaky.forward(-2.0) == pytest.approx(-0.02)
        assert leaky.derivative(-2.0) == 0.01

    def test_custom_activation_needs_name(self):
        with pytest.raises(InvalidConfig):
            Custom('', abs, abs)
        with pytest.raises(NNEngineError):
            Custom('', abs, abs)


@pytest.mark.unit
class TestSoftmax:
    """Test the numerically stable softmax."""

    @pytest.mark.parametrize('values', [
        [1, 2, 3, 4],
        [0, 0, 0],
        [-5, 0.5, 12, 3],
        [1000, 1001, 1002],
    ])
    def test_sums_to_one(self, values):
        s = softmax(Matrix.from_column(values))
        assert abs(sum(s.to_list()) - 1.0) < 1e-10
        assert all(0.0 < p < 1.0 for p in s.to_list())

    def test_preserves_ordering(self):
        s = softmax(Matrix.from_column([1, 3, 2])).to_list()
        assert s[1] > s[2] > s[0]

    def test_large_inputs_do_not_overflow(self):
        s = softmax(Matrix.from_column([1000.0, 1000.0]))
        assert s.to_list() == [0.5, 0.5]

    def test_returns_new_matrix(self):
        v = Matrix.from_column([1, 2])
        s = softmax(v)
        assert s is not v
        assert v == Matrix.from_column([1, 2])


@pytest.mark.unit
class TestCrossEntropy:
    """Test the floored cross-entropy loss."""

    def test_perfect_prediction(self):
        pred = Matrix.from_column([1, 0, 0])
        target = Matrix.from_column([1, 0, 0])
        assert cross_entropy_loss(pred, target) == pytest.approx(0.0, abs=1e-10)

    def test_matches_negative_log(self):
        pred = Matrix.from_column([0.5, 0.3, 0.2])
        target = Matrix.from_column([1, 0, 0])
        assert cross_entropy_loss(pred, target) == pytest.approx(-math.log(0.5))

    def test_zero_probability_is_floored(self):
        pred = Matrix.from_column([0.0, 1.0])
        target = Matrix.from_column([1, 0])
        loss = cross_entropy_loss(pred, target)
        assert math.isfinite(loss)
        assert loss == pytest.approx(-math.log(1e-15))

    def test_soft_targets(self):
        pred = Matrix.from_column([0.25, 0.75])
        target = Matrix.from_column([0.5, 0.5])
        expected = -0.5 * math.log(0.25) - 0.5 * math.log(0.75)
        assert cross_entropy_loss(pred, target) == pytest.approx(expected)
