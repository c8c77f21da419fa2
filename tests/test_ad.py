import numpy as np
import pytest

import blacksolv as bs
from blacksolv.ad import (
    ADArray,
    Selector,
    concatenate,
    exp,
    guarded_divide,
    initialize_variables,
    log,
    maximum,
    minimum,
    power,
    select,
    spdiag,
    subset,
    superset,
)


def _dense(x: ADArray) -> np.ndarray:
    return x.jacobian().toarray()


def test_initialize_variables_gives_identity_blocks():
    p, s = initialize_variables([np.array([1.0, 2.0, 3.0]), np.array([0.5, 0.25])])
    assert p.block_sizes == [3, 2]
    assert s.block_sizes == [3, 2]
    np.testing.assert_array_equal(_dense(p), np.hstack((np.eye(3), np.zeros((3, 2)))))
    np.testing.assert_array_equal(_dense(s), np.hstack((np.zeros((2, 3)), np.eye(2))))


def test_constant_has_no_blocks():
    c = ADArray.constant([1.0, 2.0])
    assert c.is_constant
    with pytest.raises(bs.ComputationError):
        c.jacobian()
    padded = c.with_block_sizes([2, 3])
    assert padded.block_sizes == [2, 3]
    assert padded.jacobian().nnz == 0


def test_product_and_quotient_rules():
    x, y = initialize_variables([np.array([2.0, 3.0]), np.array([4.0, 5.0])])
    product = x * y
    np.testing.assert_allclose(product.val, [8.0, 15.0])
    np.testing.assert_allclose(_dense(product), [[4.0, 0, 2.0, 0], [0, 5.0, 0, 3.0]])

    quotient = x / y
    np.testing.assert_allclose(quotient.val, [0.5, 0.6])
    expected = np.array(
        [[1 / 4.0, 0, -2.0 / 16.0, 0], [0, 1 / 5.0, 0, -3.0 / 25.0]]
    )
    np.testing.assert_allclose(_dense(quotient), expected)


def test_numpy_array_on_the_left_defers_to_adarray():
    (x,) = initialize_variables([np.array([1.0, 2.0])])
    scale = np.array([3.0, 4.0])
    for result in (scale * x, scale + x, scale - x, scale / x):
        assert isinstance(result, ADArray)
    np.testing.assert_allclose(_dense(scale * x), np.diag([3.0, 4.0]))
    np.testing.assert_allclose(_dense(scale - x), -np.eye(2))
    np.testing.assert_allclose(_dense(scale / x), np.diag([-3.0, -1.0]))


def test_power_exp_log():
    (x,) = initialize_variables([np.array([1.0, 4.0])])
    root = x**0.5
    np.testing.assert_allclose(root.val, [1.0, 2.0])
    np.testing.assert_allclose(_dense(root), np.diag([0.5, 0.25]))

    np.testing.assert_allclose(_dense(power(x, 2.0)), np.diag([2.0, 8.0]))
    np.testing.assert_allclose(_dense(power(2.0, x)), np.diag([2.0 * np.log(2.0), 16.0 * np.log(2.0)]))
    np.testing.assert_allclose(power(np.array([2.0]), 3.0), [8.0])

    np.testing.assert_allclose(_dense(exp(x)), np.diag(np.exp([1.0, 4.0])))
    np.testing.assert_allclose(_dense(log(x)), np.diag([1.0, 0.25]))


def test_select_takes_derivatives_from_the_chosen_operand():
    x, y = initialize_variables([np.array([1.0, 2.0]), np.array([10.0, 20.0])])
    result = select(np.array([True, False]), x, y * 2.0)
    np.testing.assert_allclose(result.val, [1.0, 40.0])
    np.testing.assert_allclose(_dense(result), [[1.0, 0, 0, 0], [0, 0, 0, 2.0]])


def test_select_drops_non_finite_derivatives_of_unselected_rows():
    (x,) = initialize_variables([np.array([0.0, 2.0])])
    with np.errstate(divide="ignore"):
        unsafe = 1.0 / x
    result = select(np.array([False, True]), unsafe, x)
    assert np.all(np.isfinite(result.jacobian().toarray()))


def test_selector_criteria():
    (x,) = initialize_variables([np.array([0.0, 1.0, -1.0])])
    zero = Selector(x, "zero").select(np.full(3, 5.0), x)
    np.testing.assert_allclose(zero.val, [5.0, 1.0, -1.0])
    positive = Selector(x, "greater_than_zero").select(x, np.zeros(3))
    np.testing.assert_allclose(positive.val, [0.0, 1.0, 0.0])
    np.testing.assert_allclose(_dense(positive), np.diag([0.0, 1.0, 0.0]))
    with pytest.raises(bs.ValidationError):
        Selector(x, "negative")


def test_guarded_divide_uses_fallback_where_denominator_vanishes():
    num, den = initialize_variables([np.array([1.0, 3.0]), np.array([0.0, 2.0])])
    result = guarded_divide(num, den, 7.0)
    np.testing.assert_allclose(result.val, [7.0, 1.5])
    jac = _dense(result)
    assert np.all(np.isfinite(jac))
    np.testing.assert_allclose(jac[0], 0.0)
    np.testing.assert_allclose(jac[1], [0, 0.5, 0, -0.75])


def test_maximum_and_minimum_ties_take_first_argument():
    x, y = initialize_variables([np.array([1.0, 2.0, 3.0]), np.array([1.0, 5.0, 0.0])])
    high = maximum(x, y)
    np.testing.assert_allclose(high.val, [1.0, 5.0, 3.0])
    np.testing.assert_allclose(_dense(high), [[1, 0, 0, 0, 0, 0], [0, 0, 0, 0, 1, 0], [0, 0, 1, 0, 0, 0]])
    low = minimum(x, y)
    np.testing.assert_allclose(low.val, [1.0, 2.0, 0.0])
    np.testing.assert_allclose(_dense(low)[0], [1, 0, 0, 0, 0, 0])

    clipped = maximum(x - 2.0, 0.0)
    np.testing.assert_allclose(clipped.val, [0.0, 0.0, 1.0])
    np.testing.assert_allclose(_dense(clipped), [[0, 0, 0, 0, 0, 0], [0, 1, 0, 0, 0, 0], [0, 0, 1, 0, 0, 0]])


def test_subset_superset_and_concatenate():
    x, y = initialize_variables([np.array([1.0, 2.0, 3.0]), np.array([4.0])])
    picked = subset(x, [2, 0])
    np.testing.assert_allclose(picked.val, [3.0, 1.0])
    scattered = superset(picked, [1, 3], 5)
    np.testing.assert_allclose(scattered.val, [0.0, 3.0, 0.0, 1.0, 0.0])
    assert scattered.jacobian().shape == (5, 4)
    np.testing.assert_allclose(superset(np.array([1.0, 2.0]), [0, 2], 3), [1.0, 0.0, 2.0])

    stacked = concatenate([x, y, ADArray.constant([9.0])], [3, 1])
    np.testing.assert_allclose(stacked.val, [1.0, 2.0, 3.0, 4.0, 9.0])
    jac = stacked.jacobian().toarray()
    np.testing.assert_allclose(jac[:4], np.eye(4))
    np.testing.assert_allclose(jac[4], 0.0)


def test_adding_and_subtracting_the_same_value_restores_the_original():
    x, y, z = initialize_variables(
        [np.array([1.0, 2.0]), np.array([0.5, 0.25]), np.array([3.0, -1.0])]
    )
    # `a` does not depend on z, `b` does not depend on x or y
    a = x * y + 2.0 * x
    b = exp(z) + 3.0
    restored = (a + b) - b
    np.testing.assert_allclose(restored.val, a.val, rtol=1e-14)
    assert restored.block_sizes == a.block_sizes
    for got, expected in zip(restored.jac, a.jac):
        np.testing.assert_allclose(got.toarray(), expected.toarray(), atol=1e-14)
    np.testing.assert_array_equal(restored.jac[2].toarray(), 0.0)

    # An operand without derivative blocks leaves those of the other untouched
    c = ADArray.constant([7.0, 8.0])
    restored = (a + c) - c
    np.testing.assert_allclose(restored.val, a.val, rtol=1e-14)
    np.testing.assert_allclose(_dense(restored), _dense(a))
    from_constant = (c + a) - a
    np.testing.assert_allclose(from_constant.val, c.val)
    np.testing.assert_allclose(_dense(from_constant), 0.0, atol=1e-14)


def test_mismatched_block_layouts_are_rejected():
    (x,) = initialize_variables([np.array([1.0, 2.0])])
    (y,) = initialize_variables([np.array([1.0, 2.0, 3.0])])
    with pytest.raises(bs.ComputationError):
        x.with_block_sizes([3])
    with pytest.raises(bs.ComputationError):
        x + y[np.array([0, 1])]


def test_spdiag_and_value_accessors():
    (x,) = initialize_variables([np.array([1.0, 2.0])])
    np.testing.assert_allclose(spdiag(x).toarray(), np.diag([1.0, 2.0]))
    assert x.value is x.val
    assert x.derivatives is x.jac
    assert len(x) == x.size == 2


def test_precision_context():
    assert bs.get_dtype() is np.float64
    with bs.with_precision(np.float32):
        (x,) = initialize_variables([np.array([1.0, 2.0])])
        assert x.val.dtype == np.float32
        assert bs.get_floating_point_info().eps == np.finfo(np.float32).eps
    assert bs.get_dtype() is np.float64
    with pytest.raises(bs.ValidationError):
        bs.set_dtype(np.int64)
