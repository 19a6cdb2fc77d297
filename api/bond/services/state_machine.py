from bond.records import PairState


def derive_pair_state(matched: bool, a_to_b: bool, b_to_a: bool) -> PairState:
    # Matched is terminal: withdrawn crushes never move a pair back.
    if matched:
        return PairState.MATCHED
    if a_to_b or b_to_a:
        return PairState.ONE_SIDED
    return PairState.NO_RELATION
