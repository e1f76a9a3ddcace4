import numpy as np
import pytest

from numnet import layers, specs
from numnet.activations import ActivationType
from numnet.exceptions import (
    CrossoverIncompatibilityError,
    DimensionMismatchError,
    GraphTopologyError,
    InvalidLayerError,
    NetworkBuildError,
)
from numnet.losses import CostFunctionType
from numnet.network import (
    GraphNetwork,
    TwoLayerNetwork,
    build_graph,
    build_network,
    try_build_graph,
    try_build_network,
)
from numnet.parallel import ParallelExecutor
from numnet.specs import (
    GraphNodeSpec,
    LayerKind,
    LayerSpec,
    MergeKind,
    NormalizationMode,
    Shape,
)


def _is_two_segment_mix(child, parent_a, parent_b):
    """True if child is parent_a with one contiguous run taken from parent_b."""
    child = child.ravel()
    from_a = child == parent_a.ravel()
    from_b = child == parent_b.ravel()

    if not np.all(from_a | from_b):
        return False

    only_b = np.flatnonzero(~from_a)

    return only_b.size == 0 or np.all(np.diff(only_b) == 1)


@pytest.mark.unit
class TestTwoLayerNetwork:
    def test_forward_matches_manual_computation(self):
        w1 = np.array([[0.5, -1.0], [1.5, 2.0]])
        w2 = np.array([[1.0], [-0.5]])
        network = TwoLayerNetwork(w1, w2, z1_threshold=0.25, z2_threshold=-0.1)

        x = np.array([[1.0, 2.0]])
        sigmoid = lambda z: 1.0 / (1.0 + np.exp(-z))
        expected = sigmoid(sigmoid(x @ w1 - 0.25) @ w2 + 0.1)

        np.testing.assert_allclose(network.forward(x), expected)

    def test_forward_is_deterministic(self, rng):
        network = TwoLayerNetwork.random(4, 6, 3, rng)
        x = rng.normal(size=(5, 4))

        np.testing.assert_array_equal(network.forward(x), network.forward(x))

    def test_input_size_is_checked(self, rng):
        network = TwoLayerNetwork.random(4, 6, 3, rng)

        with pytest.raises(DimensionMismatchError):
            network.forward(np.zeros((1, 5)))

    def test_weights_must_connect(self):
        with pytest.raises(InvalidLayerError):
            TwoLayerNetwork(np.zeros((3, 4)), np.zeros((5, 2)))

    def test_crossover_preserves_shape(self, rng):
        a = TwoLayerNetwork.random(4, 6, 3, rng)
        b = TwoLayerNetwork.random(4, 6, 3, rng)
        a_before, b_before = a.clone(), b.clone()

        child = a.crossover(b, rng)

        assert child.shape == a.shape == b.shape
        assert a == a_before and b == b_before

        for param_child, param_a, param_b in zip(
            child.parameters, a.parameters, b.parameters
        ):
            assert _is_two_segment_mix(param_child, param_a, param_b)

    def test_crossover_requires_same_structure(self, rng):
        a = TwoLayerNetwork.random(4, 6, 3, rng)
        b = TwoLayerNetwork.random(4, 5, 3, rng)

        with pytest.raises(CrossoverIncompatibilityError):
            a.crossover(b, rng)

    def test_clone_and_equality(self, rng):
        network = TwoLayerNetwork.random(2, 3, 1, rng)
        clone = network.clone()

        assert clone == network
        assert clone is not network

        clone.w1.values[0, 0] += 1.0
        assert clone != network

    def test_mutate_returns_new_network(self, rng):
        network = TwoLayerNetwork.random(3, 3, 3, rng)
        mutated = network.mutate(1.0, rng)

        assert mutated.shape == network.shape
        assert mutated != network


@pytest.mark.unit
class TestBuild:
    def test_sequential_build(self, rng):
        network = build_network(
            (1, 8, 8),
            [
                specs.convolutional(3, 3),
                specs.pooling(),
                specs.fully_connected(10, ActivationType.LEAKY_RELU),
                specs.softmax(4),
            ],
            rng=rng,
        )

        assert network.graph.nodes["layer_0"].output_shape == Shape(3, 6, 6)
        assert network.graph.nodes["layer_1"].output_shape == Shape(3, 3, 3)
        assert network.forward(rng.normal(size=(2, 64))).shape == (2, 4)

    @pytest.mark.parametrize(
        "layer_specs",
        [
            [specs.fully_connected(0), specs.output(1)],
            [specs.fully_connected(3)],
            [specs.output(2), specs.output(1)],
            [specs.output(1, ActivationType.TANH, CostFunctionType.CROSS_ENTROPY)],
            [specs.output(1, cost=CostFunctionType.LOG_LIKELIHOOD)],
            [LayerSpec(LayerKind.FULLY_CONNECTED, 3, cost=CostFunctionType.QUADRATIC)],
            [],
        ],
    )
    def test_invalid_layer_configuration(self, layer_specs):
        with pytest.raises(InvalidLayerError):
            build_network(4, layer_specs)

    def test_kernel_larger_than_input(self):
        with pytest.raises(InvalidLayerError) as excinfo:
            build_network((1, 3, 3), [specs.convolutional(2, 3), specs.output(1)])

        assert excinfo.value.node == "layer_0"

    def test_pooling_odd_input(self):
        with pytest.raises(InvalidLayerError):
            build_network((1, 5, 5), [specs.pooling(), specs.output(1)])

    def test_try_build_reports_instead_of_raising(self):
        result = try_build_network(4, [specs.fully_connected(3)])

        assert not result.ok
        assert isinstance(result.error, NetworkBuildError)

        with pytest.raises(NetworkBuildError):
            result.unwrap()

        assert not try_build_graph(4, [specs.input_node()]).ok

        result = try_build_network(4, [specs.output(2)])
        assert result.ok
        assert isinstance(result.unwrap(), GraphNetwork)


@pytest.mark.unit
class TestGraphTopology:
    def _graph(self, *nodes):
        return [specs.input_node()] + list(nodes)

    def test_cycle(self):
        nodes = self._graph(
            GraphNodeSpec("a", specs.fully_connected(3), ("b",)),
            GraphNodeSpec("b", specs.fully_connected(3), ("a",)),
            specs.node("out", specs.output(1), "b"),
        )

        with pytest.raises(GraphTopologyError, match="Cycle"):
            build_graph(4, nodes)

    def test_orphaned_branch(self):
        nodes = self._graph(
            specs.node("a", specs.fully_connected(3), "input"),
            specs.node("dangling", specs.fully_connected(3), "input"),
            specs.node("out", specs.output(1), "a"),
        )

        with pytest.raises(GraphTopologyError, match="orphaned"):
            build_graph(4, nodes)

    def test_unknown_parent(self):
        nodes = self._graph(specs.node("out", specs.output(1), "missing"))

        with pytest.raises(GraphTopologyError):
            build_graph(4, nodes)

    def test_duplicate_names(self):
        nodes = self._graph(
            specs.node("a", specs.fully_connected(3), "input"),
            specs.node("a", specs.output(1), "a"),
        )

        with pytest.raises(GraphTopologyError, match="Duplicate"):
            build_graph(4, nodes)

    def test_two_inputs(self):
        nodes = self._graph(
            specs.input_node("other"),
            specs.sum_node("sum", "input", "other"),
            specs.node("out", specs.output(1), "sum"),
        )

        with pytest.raises(GraphTopologyError):
            build_graph(4, nodes)

    def test_sum_shape_mismatch(self):
        nodes = self._graph(
            specs.node("a", specs.fully_connected(3), "input"),
            specs.node("b", specs.fully_connected(4), "input"),
            specs.sum_node("sum", "a", "b"),
            specs.node("out", specs.output(1), "sum"),
        )

        with pytest.raises(GraphTopologyError) as excinfo:
            build_graph(4, nodes)

        assert excinfo.value.node == "sum"

    def test_merge_needs_two_parents(self):
        nodes = self._graph(
            GraphNodeSpec("sum", MergeKind.SUM, ("input",)),
            specs.node("out", specs.output(1), "sum"),
        )

        with pytest.raises(GraphTopologyError):
            build_graph(4, nodes)

    def test_branches_evaluated_in_dependency_order(self, rng):
        # Declared out of order on purpose.
        nodes = [
            specs.node("out", specs.output(2), "concat"),
            specs.depth_concatenation("concat", "left", "right"),
            specs.node("right", specs.convolutional(3, 3), "input"),
            specs.node("left", specs.convolutional(2, 3), "input"),
            specs.input_node(),
        ]

        network = build_graph((1, 6, 6), nodes, rng=rng)

        assert network.graph.order == ["right", "left", "concat", "out"]
        assert network.graph.nodes["concat"].output_shape == Shape(5, 4, 4)
        assert network.forward(rng.normal(size=(3, 36))).shape == (3, 2)


@pytest.mark.unit
class TestBackpropagation:
    def _check_gradients(self, network, X, y, numerical_gradient):
        cost, grads = network.backpropagate(X, y, executor=ParallelExecutor(1))

        assert cost == pytest.approx(network.cost(X, y))

        for param, grad in zip(network.parameters, grads):
            expected = numerical_gradient(lambda: network.cost(X, y), param)
            np.testing.assert_allclose(grad, expected, rtol=1e-4, atol=1e-7)

    def test_dense_network(self, rng, numerical_gradient):
        network = build_network(
            3,
            [
                specs.fully_connected(4, ActivationType.TANH),
                specs.fully_connected(3, ActivationType.SOFTPLUS),
                specs.output(2, ActivationType.SIGMOID, CostFunctionType.QUADRATIC),
            ],
            rng=rng,
        )
        X = rng.normal(size=(5, 3))
        y = rng.uniform(size=(5, 2))

        self._check_gradients(network, X, y, numerical_gradient)

    def test_cross_entropy_output(self, dense_network, xor_data, numerical_gradient):
        X, y = xor_data
        self._check_gradients(dense_network, X, y, numerical_gradient)

    def test_convolutional_network(self, rng, numerical_gradient):
        network = build_network(
            (2, 6, 6),
            [
                specs.convolutional(3, 3, ActivationType.TANH),
                specs.pooling(),
                specs.activation(ActivationType.ELU),
                specs.softmax(3),
            ],
            rng=rng,
        )
        X = rng.normal(size=(4, 72))
        y = np.eye(3)[rng.integers(0, 3, size=4)]

        self._check_gradients(network, X, y, numerical_gradient)

    def test_graph_with_merges(self, rng, numerical_gradient):
        nodes = [
            specs.input_node(),
            specs.node("a", specs.fully_connected(3, ActivationType.TANH), "input"),
            specs.node("b", specs.fully_connected(3, ActivationType.SIGMOID), "input"),
            specs.sum_node("sum", "a", "b"),
            specs.depth_concatenation("concat", "sum", "a"),
            specs.node("out", specs.output(2), "concat"),
        ]
        network = build_graph(4, nodes, rng=rng)
        X = rng.normal(size=(3, 4))
        y = rng.uniform(size=(3, 2))

        self._check_gradients(network, X, y, numerical_gradient)

    def test_partitioned_batch_matches_single_partition(self, dense_network, rng):
        X = rng.normal(size=(11, 2))
        y = rng.uniform(size=(11, 1)).round()

        cost_a, grads_a = dense_network.backpropagate(X, y, ParallelExecutor(1))
        cost_b, grads_b = dense_network.backpropagate(X, y, ParallelExecutor(4))

        assert cost_a == pytest.approx(cost_b)

        for grad_a, grad_b in zip(grads_a, grads_b):
            np.testing.assert_allclose(grad_a, grad_b, atol=1e-12)

    def test_backpropagation_does_not_touch_weights(self, dense_network, xor_data):
        before = dense_network.clone()
        dense_network.backpropagate(*xor_data)

        assert dense_network == before


@pytest.mark.unit
class TestGraphNetwork:
    def test_forward_is_deterministic(self, dense_network, rng):
        X = rng.normal(size=(6, 2))
        np.testing.assert_array_equal(dense_network.forward(X), dense_network.forward(X))

    def test_single_sample(self, dense_network):
        assert dense_network.forward([0.5, -0.5]).shape == (1, 1)

    def test_wrong_input_size(self, dense_network):
        with pytest.raises(DimensionMismatchError):
            dense_network.forward(np.zeros((2, 3)))

    def test_evaluate(self, dense_network, xor_data):
        result = dense_network.evaluate(*xor_data)

        assert result.cost > 0.0
        assert 0.0 <= result.accuracy <= 1.0

    def test_crossover(self, rng):
        layer_specs = [specs.fully_connected(5), specs.output(2)]
        a = build_network(3, layer_specs, rng=rng)
        b = build_network(3, layer_specs, rng=rng)
        a_before = a.clone()

        child = a.crossover(b, rng)

        assert child.descriptor == a.descriptor
        assert a == a_before

        for param_child, param_a, param_b in zip(
            child.parameters, a.parameters, b.parameters
        ):
            assert param_child.shape == param_a.shape
            assert _is_two_segment_mix(param_child, param_a, param_b)

    def test_crossover_incompatible_structures(self, rng):
        a = build_network(3, [specs.fully_connected(5), specs.output(2)], rng=rng)
        b = build_network(3, [specs.fully_connected(4), specs.output(2)], rng=rng)
        c = TwoLayerNetwork.random(3, 5, 2, rng)

        assert not a.is_compatible(b)

        with pytest.raises(CrossoverIncompatibilityError):
            a.crossover(b, rng)

        with pytest.raises(CrossoverIncompatibilityError):
            a.crossover(c, rng)

    def test_clone_is_independent(self, dense_network):
        clone = dense_network.clone()
        assert clone == dense_network

        clone.parameters[0][0, 0] += 1.0
        assert clone != dense_network

    def test_apply_parameters_checks_shapes(self, dense_network):
        params = [param + 1.0 for param in dense_network.parameters]
        dense_network.apply_parameters(params)

        for param, new_param in zip(dense_network.parameters, params):
            np.testing.assert_array_equal(param, new_param)

        with pytest.raises(DimensionMismatchError):
            dense_network.apply_parameters(params[:-1])

    def test_numeric_overflow_flag(self, dense_network):
        assert not dense_network.is_in_numeric_overflow

        dense_network.parameters[0][0, 0] = np.nan
        assert dense_network.is_in_numeric_overflow


def _training_cost(network, X, y, dropout_layers=(), seed=3):
    """Cost of one training pass, with every dropout mask redrawn from ``seed``."""
    for layer in dropout_layers:
        layer.rng = np.random.default_rng(seed)

    return network.backpropagate(X, y, executor=ParallelExecutor(1))


@pytest.mark.unit
class TestBatchNormalization:
    @pytest.mark.parametrize("mode", list(NormalizationMode), ids=lambda m: m.name)
    def test_layer_input_gradient(self, mode, rng, numerical_gradient):
        layer = layers.BatchNormalization((2, 3, 3), mode, ActivationType.SIGMOID)
        layer.gamma[...] = rng.uniform(0.5, 1.5, size=layer.gamma.shape)
        layer.beta[...] = rng.normal(size=layer.beta.shape)

        X = rng.normal(size=(5, 2, 3, 3))
        weights = rng.normal(size=X.shape)

        def cost():
            out, _ = layer.forward_train(X)
            return float(np.sum(out * weights))

        _, cache = layer.forward_train(X)
        (dX,), (dgamma, dbeta) = layer.backward(weights, cache)

        np.testing.assert_allclose(
            dX, numerical_gradient(cost, X), rtol=1e-4, atol=1e-7
        )
        np.testing.assert_allclose(
            dgamma, numerical_gradient(cost, layer.gamma), rtol=1e-4, atol=1e-7
        )
        np.testing.assert_allclose(
            dbeta, numerical_gradient(cost, layer.beta), rtol=1e-4, atol=1e-7
        )

    def test_statistics_shape(self):
        spatial = layers.BatchNormalization((3, 2, 2), NormalizationMode.SPATIAL)
        per_unit = layers.BatchNormalization((3, 2, 2), NormalizationMode.PER_ACTIVATION)

        assert spatial.gamma.shape == spatial.running_mean.shape == (3, 1, 1)
        assert per_unit.gamma.shape == per_unit.running_var.shape == (3, 2, 2)
        assert spatial.size == 6 and per_unit.size == 24

    def test_training_pass_normalizes_each_channel(self, rng):
        layer = layers.BatchNormalization((2, 3, 3), NormalizationMode.SPATIAL)
        X = rng.normal(3.0, 2.0, size=(8, 2, 3, 3))

        out, _ = layer.forward_train(X)

        np.testing.assert_allclose(out.mean(axis=(0, 2, 3)), 0.0, atol=1e-10)
        np.testing.assert_allclose(out.var(axis=(0, 2, 3)), 1.0, atol=1e-4)

    def test_running_statistics_are_a_cumulative_average(self, rng):
        layer = layers.BatchNormalization((4, 1, 1), NormalizationMode.PER_ACTIVATION)
        X_a = rng.normal(1.0, 2.0, size=(6, 4, 1, 1))
        X_b = rng.normal(-1.0, 0.5, size=(6, 4, 1, 1))

        layer.forward_train(X_a)
        layer.forward_train(X_b)

        assert layer.iteration == 2
        np.testing.assert_allclose(
            layer.running_mean, (X_a.mean(axis=0) + X_b.mean(axis=0)) / 2.0
        )
        np.testing.assert_allclose(
            layer.running_var, (X_a.var(axis=0) + X_b.var(axis=0)) / 2.0
        )

        X = rng.normal(size=(3, 4, 1, 1))
        expected = (X - layer.running_mean) / np.sqrt(layer.running_var + layer.eps)

        np.testing.assert_allclose(layer.forward(X), expected)

    @pytest.mark.parametrize(
        "input_shape, layer_specs",
        [
            (
                (2, 4, 4),
                [
                    specs.convolutional(3, 3, ActivationType.TANH),
                    specs.batch_normalization(NormalizationMode.SPATIAL),
                    specs.softmax(3),
                ],
            ),
            (
                3,
                [
                    specs.fully_connected(4, ActivationType.TANH),
                    specs.batch_normalization(
                        NormalizationMode.PER_ACTIVATION, ActivationType.TANH
                    ),
                    specs.output(3, ActivationType.SIGMOID),
                ],
            ),
        ],
        ids=["spatial", "per_activation"],
    )
    def test_network_gradients(
        self, input_shape, layer_specs, rng, numerical_gradient
    ):
        network = build_network(input_shape, layer_specs, rng=rng)
        X = rng.normal(size=(6, Shape.of(input_shape).size))
        y = np.eye(3)[rng.integers(0, 3, size=6)]

        _, grads = _training_cost(network, X, y)

        for param, grad in zip(network.parameters, grads):
            expected = numerical_gradient(
                lambda: _training_cost(network, X, y)[0], param
            )
            np.testing.assert_allclose(grad, expected, rtol=1e-4, atol=1e-7)


@pytest.mark.unit
class TestDropout:
    def test_training_mask_is_scaled_and_reused_backwards(self, rng):
        layer = layers.Dropout((4, 1, 1), drop_prob=0.5, rng=rng)
        X = np.ones((200, 4, 1, 1))

        out, cache = layer.forward_train(X)
        (dX,), grads = layer.backward(np.ones_like(X), cache)

        assert set(np.unique(out)) == {0.0, 2.0}
        assert 0.4 < np.mean(out == 0.0) < 0.6
        np.testing.assert_array_equal(dX, out)
        assert grads == tuple()

    def test_no_drop_keeps_everything(self, rng):
        layer = layers.Dropout((3, 1, 1), drop_prob=0.0, rng=rng)
        X = rng.normal(size=(5, 3, 1, 1))

        np.testing.assert_array_equal(layer.forward_train(X)[0], X)

    def test_inference_is_the_identity(self, rng):
        network = build_network(
            3,
            [
                specs.fully_connected(5, ActivationType.TANH),
                specs.dropout(0.5),
                specs.output(2),
            ],
            rng=rng,
        )
        X = rng.normal(size=(4, 3))
        dense = network.graph.nodes["layer_0"].layer
        out = network.graph.nodes["layer_2"].layer

        expected = out.forward(dense.forward(X.reshape(4, 3, 1, 1)))

        np.testing.assert_allclose(network.forward(X), expected.reshape(4, 2))
        np.testing.assert_array_equal(network.forward(X), network.forward(X))

    def test_network_gradients(self, rng, numerical_gradient):
        network = build_network(
            3,
            [
                specs.fully_connected(6, ActivationType.TANH),
                specs.dropout(0.3),
                specs.output(2, ActivationType.SIGMOID),
            ],
            rng=rng,
        )
        dropout = [network.graph.nodes["layer_1"].layer]
        X = rng.normal(size=(5, 3))
        y = rng.uniform(size=(5, 2))

        _, grads = _training_cost(network, X, y, dropout)

        for param, grad in zip(network.parameters, grads):
            expected = numerical_gradient(
                lambda: _training_cost(network, X, y, dropout)[0], param
            )
            np.testing.assert_allclose(grad, expected, rtol=1e-4, atol=1e-7)

    def test_invalid_specs(self):
        with pytest.raises(InvalidLayerError):
            build_network(3, [specs.dropout(1.0), specs.output(1)])

        with pytest.raises(InvalidLayerError):
            build_network(
                3, [LayerSpec(LayerKind.BATCH_NORMALIZATION), specs.output(1)]
            )
