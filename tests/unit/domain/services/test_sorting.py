"""Unit tests for integer sort-order assignment."""

from types import SimpleNamespace

from compendia.domain.services.sorting import SORT_INTEGER_DENSITY, perform_integer_sort


def doc(sort: int, name: str = "") -> SimpleNamespace:
    return SimpleNamespace(_source={"sort": sort, "name": name})


class TestPerformIntegerSort:
    def test_no_siblings_gets_density(self) -> None:
        source = doc(0)
        assert perform_integer_sort(source, siblings=[]) == [(source, {"sort": SORT_INTEGER_DENSITY})]

    def test_without_target_goes_last(self) -> None:
        source = doc(0)
        siblings = [doc(100000), doc(200000)]

        updates = perform_integer_sort(source, siblings=siblings)

        assert updates == [(source, {"sort": 300000})]

    def test_before_target_takes_midpoint(self) -> None:
        first, second = doc(100000), doc(200000)
        source = doc(0)

        updates = perform_integer_sort(source, target=second, siblings=[first, second])

        assert updates == [(source, {"sort": 150000})]

    def test_before_first_target_goes_below(self) -> None:
        first = doc(100000)
        source = doc(0)

        updates = perform_integer_sort(source, target=first, siblings=[first])

        assert updates == [(source, {"sort": 0})]

    def test_after_target_takes_midpoint(self) -> None:
        first, second = doc(100000), doc(200000)
        source = doc(0)

        updates = perform_integer_sort(
            source, target=first, siblings=[second, first], sort_before=False
        )

        assert updates == [(source, {"sort": 150000})]

    def test_source_is_excluded_from_siblings(self) -> None:
        source = doc(100000)
        assert perform_integer_sort(source, siblings=[source]) == [
            (source, {"sort": SORT_INTEGER_DENSITY})
        ]

    def test_no_gap_reindexes_all_siblings(self) -> None:
        first, second = doc(5), doc(6)
        source = doc(0)

        updates = perform_integer_sort(source, target=second, siblings=[first, second])

        assert updates == [
            (first, {"sort": 100000}),
            (source, {"sort": 200000}),
            (second, {"sort": 300000}),
        ]
