"""
Test suite for Palace game rules.

Covers:
- Card values and deck construction
- Lobby, start preconditions and dealing
- Single and combo legality, including the wild 2
- Power cards (10 clear, 7 step back, 8 skip)
- Taking the pile and the must-throw state
- Blind reveals and the 2s-with-blind combo
- Win detection, player removal and card conservation

Run with: pytest test_game.py -v
"""

from collections import Counter

import pytest

import game as game_module
from errors import (
    CardNotFound,
    GameAlreadyStarted,
    GameNotInProgress,
    InvalidBlindIndex,
    InvalidCombination,
    InvalidPayload,
    NotCreator,
    NotReady,
    NotYourTurn,
    RoomFull,
)
from game import (
    Card, Deck, Game, GamePhase, Player, Rank, Suit,
    can_play_card, can_play_combo, pile_value_after,
)


SUITS = {"H": Suit.HEARTS, "D": Suit.DIAMONDS, "C": Suit.CLUBS, "S": Suit.SPADES}


def card(code: str) -> Card:
    """'9H' -> nine of hearts, '10C' -> ten of clubs."""
    return Card(SUITS[code[-1]], Rank(code[:-1]))


def cards(*codes: str) -> list[Card]:
    return [card(c) for c in codes]


def lobby(num_players: int = 3, ready: bool = True) -> Game:
    game = Game(room_code="TEST")
    for i in range(num_players):
        game.add_player(Player(id=f"p{i}", name=f"Player {i}"))
        if ready:
            game.set_ready(f"p{i}")
    return game


def rig_game(hands, blinds=None, table=(), deck=(), current=0) -> Game:
    """Start a game, then replace every card location with known cards."""
    game = lobby(len(hands))
    game.start_game("p0", seed=7)
    game.deck.cards = cards(*deck)
    for i, hand in enumerate(hands):
        player = game.players[i]
        player.hand_cards = cards(*hand)
        player.blind_cards = cards(*(blinds[i] if blinds else ("KS", "QS", "JS")))
    game.table_pile = cards(*table)
    game.last_card_value = game.table_pile[-1].numeric_value if game.table_pile else 0
    game.current_player_index = current
    return game


def snapshot(game: Game) -> dict:
    return {
        "hands": [list(p.hand_cards) for p in game.players],
        "blinds": [list(p.blind_cards) for p in game.players],
        "table": list(game.table_pile),
        "deck": list(game.deck.cards) if game.deck else [],
        "current": game.current_player_index,
        "last": game.last_card_value,
        "must_throw": (game.must_throw_after_taking, game.player_who_took),
        "skip": game.skip_next_player,
        "phase": game.phase,
    }


# =============================================================================
# Card / Deck
# =============================================================================

class TestCard:

    def test_numeric_values(self):
        assert card("2H").numeric_value == 2
        assert card("10H").numeric_value == 10
        assert card("JH").numeric_value == 11
        assert card("QH").numeric_value == 12
        assert card("KH").numeric_value == 13
        assert card("AH").numeric_value == 14

    def test_value_equality(self):
        assert Card(Suit.SPADES, Rank.NINE) == card("9S")
        assert card("9S") != card("9H")
        assert len({card("9S"), card("9S")}) == 1

    def test_wire_format(self):
        assert card("QD").to_dict() == {"suit": "diamonds", "value": "Q", "numericValue": 12}


class TestDeck:

    def test_standard_deck_has_52_unique_cards(self):
        deck = Deck(seed=1)
        assert len(deck) == 52
        assert len(set(deck.cards)) == 52

    def test_seed_makes_shuffle_reproducible(self):
        assert Deck(seed=99).cards == Deck(seed=99).cards
        assert Deck(seed=1).cards != Deck(seed=2).cards

    def test_draws_from_front(self):
        deck = Deck(seed=3)
        front = deck.cards[0]
        assert deck.draw() == front
        assert deck.cards_remaining() == 51

    def test_draw_many_stops_when_empty(self):
        deck = Deck(seed=3)
        deck.cards = cards("2H", "3H")
        assert deck.draw_many(3) == cards("2H", "3H")
        assert deck.draw() is None


# =============================================================================
# Lobby and dealing
# =============================================================================

class TestLobby:

    def test_first_player_is_creator(self):
        game = lobby(3)
        assert game.creator_id == "p0"

    def test_seventh_player_rejected(self):
        game = lobby(6)
        with pytest.raises(RoomFull):
            game.add_player(Player(id="p6", name="Late"))

    def test_cannot_join_after_start(self):
        game = lobby(2)
        game.start_game("p0")
        with pytest.raises(GameAlreadyStarted):
            game.add_player(Player(id="p2", name="Late"))

    def test_only_creator_may_start(self):
        game = lobby(3)
        with pytest.raises(NotCreator):
            game.start_game("p1")
        assert game.phase == GamePhase.LOBBY

    def test_start_needs_everyone_ready(self):
        game = lobby(3, ready=False)
        game.set_ready("p0")
        game.set_ready("p1")
        with pytest.raises(NotReady):
            game.start_game("p0")

    def test_start_needs_two_players(self):
        game = lobby(1)
        with pytest.raises(NotReady):
            game.start_game("p0")

    def test_ready_ignored_after_start(self):
        game = lobby(2)
        game.start_game("p0")
        assert game.set_ready("p1") is False


class TestDealing:

    def test_deal_three_hand_three_blind_and_opening_discard(self):
        game = lobby(4)
        assert game.start_game("p0", seed=11)

        for player in game.players:
            assert len(player.hand_cards) == 3
            assert len(player.blind_cards) == 3
        assert len(game.table_pile) == 1
        assert game.last_card_value == game.table_pile[0].numeric_value
        assert game.deck.cards_remaining() == 52 - 4 * 6 - 1
        assert game.current_player_index == 0
        assert game.phase == GamePhase.IN_PROGRESS

    def test_deal_order_follows_player_order(self):
        game = lobby(2)
        game.start_game("p0", seed=5)
        expected = Deck(seed=5).cards
        assert game.players[0].hand_cards == expected[0:3]
        assert game.players[0].blind_cards == expected[3:6]
        assert game.players[1].hand_cards == expected[6:9]
        assert game.players[1].blind_cards == expected[9:12]
        assert game.table_pile == [expected[12]]

    def test_start_is_idempotent(self):
        game = lobby(3)
        game.start_game("p0", seed=1)
        before = snapshot(game)
        assert game.start_game("p0", seed=2) is False
        assert snapshot(game) == before

    def test_exhausted_deck_leaves_empty_pile(self, monkeypatch):
        monkeypatch.setattr(game_module, "HAND_SIZE", 5)
        monkeypatch.setattr(game_module, "BLIND_SIZE", 4)
        game = lobby(6)
        game.start_game("p0", seed=1)
        assert game.table_pile == []
        assert game.last_card_value == 0
        assert game.card_count() == 52


# =============================================================================
# Legality
# =============================================================================

class TestLegality:

    def test_single_card_meets_or_beats(self):
        assert can_play_combo(cards("9H"), 5)
        assert can_play_combo(cards("5H"), 5)
        assert not can_play_combo(cards("4H"), 5)

    def test_ten_bypasses_hierarchy(self):
        assert can_play_combo(cards("10H"), 14)

    def test_two_bypasses_as_single_check_only(self):
        assert can_play_card(card("2H"), 14)

    @pytest.mark.parametrize("last_value", range(0, 15))
    def test_lone_two_never_legal(self, last_value):
        assert not can_play_combo(cards("2H"), last_value)

    def test_equal_rank_combo(self):
        assert can_play_combo(cards("9H", "9D", "9C"), 9)
        assert not can_play_combo(cards("9H", "9D"), 10)
        assert not can_play_combo(cards("9H", "JD"), 5)

    def test_wild_combo_ignores_pile(self):
        assert can_play_combo(cards("2H", "3C"), 9)
        assert can_play_combo(cards("2H", "3C", "KD", "4S"), 14)

    def test_combo_without_two_below_pile_rejected(self):
        assert not can_play_combo(cards("3H", "4C"), 9)

    def test_twos_only_combo_rejected(self):
        assert not can_play_combo(cards("2H", "2D"), 0)

    def test_empty_play_rejected(self):
        assert not can_play_combo([], 0)

    def test_pile_value_after_wild_combo_is_highest_companion(self):
        assert pile_value_after(cards("2H", "3C", "2D")) == 3
        assert pile_value_after(cards("9C", "2H", "4D")) == 9

    def test_pile_value_after_plain_play_is_last_card(self):
        assert pile_value_after(cards("QH", "QD")) == 12
        assert pile_value_after(cards("10S")) == 10


# =============================================================================
# Playing cards
# =============================================================================

class TestPlayCards:

    def test_three_player_scenario(self):
        game = rig_game(
            hands=[("9H", "4C", "4D"), ("2H", "2D", "3C"), ("2S", "5C", "6C")],
            table=("5S",),
            deck=("JH", "JD", "JC", "QH", "QD", "QC"),
        )

        game.play_cards("p0", cards("9H"))
        assert game.last_card_value == 9
        assert game.current_player().id == "p1"

        game.play_cards("p1", cards("2H", "2D", "3C"))
        assert game.last_card_value == 3
        assert game.current_player().id == "p2"

        before = snapshot(game)
        with pytest.raises(InvalidCombination):
            game.play_cards("p2", cards("2S"))
        assert snapshot(game) == before

    def test_played_cards_land_in_submission_order(self):
        game = rig_game(hands=[("3C", "2H", "KD"), ("4C",)], table=("9S",))
        game.play_cards("p0", cards("3C", "2H"))
        assert game.table_pile == cards("9S", "3C", "2H")

    def test_out_of_turn_rejected(self):
        game = rig_game(hands=[("9H",), ("9D",)])
        before = snapshot(game)
        with pytest.raises(NotYourTurn):
            game.play_cards("p1", cards("9D"))
        assert snapshot(game) == before

    def test_missing_card_rejects_whole_play(self):
        game = rig_game(hands=[("9H", "9D", "3C"), ("4C",)], table=("5S",))
        before = snapshot(game)
        with pytest.raises(CardNotFound):
            game.play_cards("p0", cards("9H", "9S"))
        assert snapshot(game) == before

    def test_duplicate_submission_rejected(self):
        game = rig_game(hands=[("9H", "3C"), ("4C",)], table=("5S",))
        with pytest.raises(CardNotFound):
            game.play_cards("p0", cards("9H", "9H"))
        assert game.players[0].hand_cards == cards("9H", "3C")

    def test_plays_blind_once_hand_is_empty(self):
        game = rig_game(hands=[(), ("4C",)], blinds=[("5H", "KS", "QS"), ("JS",)], table=("3S",))
        game.play_cards("p0", cards("5H"))
        assert game.players[0].blind_cards == cards("KS", "QS")
        assert game.table_pile[-1] == card("5H")

    def test_blind_card_unreachable_while_hand_has_cards(self):
        game = rig_game(hands=[("3C",), ("4C",)], blinds=[("KH",), ("JS",)], table=("2S",))
        with pytest.raises(CardNotFound):
            game.play_cards("p0", cards("KH"))

    def test_hand_refills_to_three_from_front_of_deck(self):
        game = rig_game(hands=[("9H", "4C", "5C"), ("4D",)], table=("3S",), deck=("JH", "QH", "KH", "AH"))
        game.play_cards("p0", cards("9H"))
        assert game.players[0].hand_cards == cards("4C", "5C", "JH")
        assert game.deck.cards == cards("QH", "KH", "AH")

    def test_refill_takes_what_the_deck_has(self):
        game = rig_game(hands=[("9H", "9D", "9C"), ("4D",)], table=("3S",), deck=("JH",))
        game.play_cards("p0", cards("9H", "9D", "9C"))
        assert game.players[0].hand_cards == cards("JH")
        assert game.deck.cards_remaining() == 0

    def test_no_refill_when_hand_is_full(self):
        game = rig_game(hands=[("9H", "4C", "5C", "6C"), ("4D",)], table=("3S",), deck=("JH",))
        game.play_cards("p0", cards("9H"))
        assert len(game.players[0].hand_cards) == 3
        assert game.deck.cards == cards("JH")


class TestPowerCards:

    def test_ten_clears_pile_out_of_play(self):
        game = rig_game(hands=[("10C", "3C"), ("4C",)], table=("5H", "KH"))
        result = game.play_cards("p0", cards("10C"))
        assert result.pile_cleared
        assert game.table_pile == []
        assert game.last_card_value == 0
        assert game.out_of_play == cards("5H", "KH", "10C")

    def test_two_with_ten_clears(self):
        game = rig_game(hands=[("2C", "10D", "3C"), ("4C",)], table=("AH",))
        game.play_cards("p0", cards("2C", "10D"))
        assert game.table_pile == []
        assert game.last_card_value == 0

    def test_eight_skips_next_player(self):
        game = rig_game(hands=[("8H",), ("4C",), ("5C",)], table=("3S",))
        game.play_cards("p0", cards("8H"))
        assert game.current_player().id == "p2"
        assert game.skip_next_player is False

    def test_eight_skip_wraps_around(self):
        game = rig_game(hands=[("4C",), ("5C",), ("8H",)], table=("3S",), current=2)
        game.play_cards("p2", cards("8H"))
        assert game.current_player().id == "p1"

    def test_seven_steps_back_then_skips(self):
        # Back one seat, then the skipped advance lands one past the player
        game = rig_game(hands=[("4C",), ("7H",), ("5C",), ("6C",)], table=("3S",), current=1)
        game.play_cards("p1", cards("7H"))
        assert game.current_player().id == "p2"
        assert game.turn_direction == 1
        assert game.skip_next_player is False

    def test_two_sevens_apply_cumulatively(self):
        game = rig_game(hands=[("7H", "7D"), ("4C",), ("5C",), ("6C",)], table=("3S",))
        game.play_cards("p0", cards("7H", "7D"))
        assert game.current_player().id == "p0"

    def test_seven_with_eight(self):
        game = rig_game(hands=[("2C", "7H", "8D"), ("4C",), ("5C",), ("6C",)], table=("3S",))
        game.play_cards("p0", cards("2C", "7H", "8D"))
        assert game.current_player().id == "p1"


class TestTurnAdvance:

    def test_reverse_direction(self):
        game = rig_game(hands=[("9H",), ("4C",), ("5C",)], table=("3S",))
        game.turn_direction = -1
        game.play_cards("p0", cards("9H"))
        assert game.current_player().id == "p2"

    def test_reverse_direction_with_skip(self):
        game = rig_game(hands=[("8H",), ("4C",), ("5C",), ("6C",)], table=("3S",))
        game.turn_direction = -1
        game.play_cards("p0", cards("8H"))
        assert game.current_player().id == "p2"


# =============================================================================
# Take pile / must-throw
# =============================================================================

class TestTakePile:

    def test_take_then_must_throw_scenario(self):
        game = rig_game(hands=[("4C", "5C", "6C"), ("9D", "KD", "QD")], table=("9S", "JH"))

        taken = game.take_table_cards("p0")
        assert taken == cards("9S", "JH")
        assert game.must_throw_after_taking is True
        assert game.player_who_took == "p0"
        assert game.current_player().id == "p0"
        assert game.table_pile == []
        assert game.last_card_value == 0
        assert game.players[0].hand_cards == cards("4C", "5C", "6C", "9S", "JH")

        with pytest.raises(NotYourTurn):
            game.play_cards("p1", cards("9D"))
        with pytest.raises(NotYourTurn):
            game.take_table_cards("p1")
        with pytest.raises(NotYourTurn):
            game.reveal_blind_card("p1", 0)

        game.play_cards("p0", cards("4C"))
        assert game.must_throw_after_taking is False
        assert game.player_who_took is None
        assert game.current_player().id == "p1"

    def test_taker_cannot_take_again(self):
        game = rig_game(hands=[("4C",), ("9D",)], table=("9S",))
        game.take_table_cards("p0")
        with pytest.raises(NotYourTurn):
            game.take_table_cards("p0")

    def test_take_out_of_turn(self):
        game = rig_game(hands=[("4C",), ("9D",)], table=("9S",))
        with pytest.raises(NotYourTurn):
            game.take_table_cards("p1")
        assert game.table_pile == cards("9S")

    def test_failed_throw_keeps_must_throw(self):
        game = rig_game(hands=[("2C", "4C"), ("9D",)], table=("9S",))
        game.take_table_cards("p0")
        with pytest.raises(InvalidCombination):
            game.play_cards("p0", cards("2C"))
        assert game.must_throw_after_taking is True
        assert game.player_who_took == "p0"

    def test_take_before_start(self):
        game = lobby(2)
        with pytest.raises(GameNotInProgress):
            game.take_table_cards("p0")

    def test_empty_pile_cannot_be_taken(self):
        game = rig_game(hands=[("4C",), ("9D",)])
        before = snapshot(game)
        with pytest.raises(InvalidCombination):
            game.take_table_cards("p0")
        assert snapshot(game) == before

    def test_lone_two_with_empty_pile_cannot_take(self):
        game = rig_game(hands=[("2C",), ("9D",)], blinds=[(), ("JS",)])
        with pytest.raises(InvalidCombination):
            game.take_table_cards("p0")
        assert game.must_throw_after_taking is False
        assert game.player_who_took is None

    def test_take_leaving_only_twos_is_refused(self):
        game = rig_game(hands=[("2C",), ("9D",)], blinds=[(), ("JS",)], table=("2D",))
        before = snapshot(game)
        with pytest.raises(InvalidCombination):
            game.take_table_cards("p0")
        assert snapshot(game) == before

    def test_twos_with_a_blind_left_may_take(self):
        game = rig_game(hands=[("2C",), ("9D",)], blinds=[("KS",), ("JS",)], table=("2D",))
        game.take_table_cards("p0")
        assert game.players[0].hand_cards == cards("2C", "2D")

        game.play_twos_with_blind("p0", cards("2C", "2D"), 0)
        assert game.must_throw_after_taking is False
        assert game.last_card_value == 13

    def test_non_two_on_the_pile_may_be_taken(self):
        game = rig_game(hands=[("2C",), ("9D",)], blinds=[(), ("JS",)], table=("2D", "5H"))
        game.take_table_cards("p0")
        game.play_cards("p0", cards("5H"))
        assert game.must_throw_after_taking is False


# =============================================================================
# Blind reveal
# =============================================================================

class TestRevealBlind:

    def test_reveal_requires_empty_or_all_twos_hand(self):
        game = rig_game(hands=[("3C",), ("4C",)], blinds=[("9H", "KS"), ("JS",)])
        with pytest.raises(InvalidCombination):
            game.reveal_blind_card("p0", 0)
        assert game.players[0].blind_cards == cards("9H", "KS")

    def test_reveal_with_empty_hand_keeps_turn(self):
        game = rig_game(hands=[(), ("4C",)], blinds=[("9H", "KS", "QS"), ("JS",)])
        revealed, again = game.reveal_blind_card("p0", 1)
        assert revealed == card("KS")
        assert again is False
        assert game.players[0].hand_cards == cards("KS")
        assert game.players[0].blind_cards == cards("9H", "QS")
        assert game.current_player().id == "p0"

    def test_reveal_with_all_twos_hand(self):
        game = rig_game(hands=[("2H", "2D"), ("4C",)], blinds=[("9H",), ("JS",)])
        revealed, _ = game.reveal_blind_card("p0", 0)
        assert revealed == card("9H")
        assert game.players[0].hand_cards == cards("2H", "2D", "9H")

    def test_revealing_two_allows_another(self):
        game = rig_game(hands=[(), ("4C",)], blinds=[("2H", "2D", "KS"), ("JS",)])
        _, again = game.reveal_blind_card("p0", 0)
        assert again is True
        _, again = game.reveal_blind_card("p0", 0)
        assert again is True
        revealed, again = game.reveal_blind_card("p0", 0)
        assert revealed == card("KS")
        assert again is False

    def test_revealing_last_blind_two_allows_no_more(self):
        game = rig_game(hands=[(), ("4C",)], blinds=[("2H",), ("JS",)])
        _, again = game.reveal_blind_card("p0", 0)
        assert again is False

    @pytest.mark.parametrize("index", [-1, 3, 10])
    def test_invalid_index(self, index):
        game = rig_game(hands=[(), ("4C",)])
        with pytest.raises(InvalidBlindIndex):
            game.reveal_blind_card("p0", index)

    def test_reveal_out_of_turn(self):
        game = rig_game(hands=[(), ()])
        with pytest.raises(NotYourTurn):
            game.reveal_blind_card("p1", 0)

    def test_taker_may_reveal_during_must_throw(self):
        game = rig_game(hands=[(), ("4C",)], blinds=[("9H", "KS"), ("JS",)], table=("2C",))
        game.take_table_cards("p0")
        revealed, _ = game.reveal_blind_card("p0", 0)
        assert revealed == card("9H")
        assert game.must_throw_after_taking is True

    def test_last_blind_stays_down_while_owing_a_throw(self):
        game = rig_game(hands=[(), ("4C",)], blinds=[("9H",), ("JS",)], table=("2C",))
        game.take_table_cards("p0")
        with pytest.raises(InvalidCombination):
            game.reveal_blind_card("p0", 0)
        assert game.players[0].blind_cards == cards("9H")

        game.play_twos_with_blind("p0", cards("2C"), 0)
        assert game.must_throw_after_taking is False


# =============================================================================
# 2s with blind combo
# =============================================================================

class TestTwosWithBlind:

    def test_combo_sets_pile_to_blind_value(self):
        game = rig_game(
            hands=[("2H", "2D"), ("4C",), ("5C",)],
            blinds=[("9C", "KS", "QS"), ("JS",), ("JD",)],
            table=("JH",),
        )
        result = game.play_twos_with_blind("p0", cards("2H", "2D"), 0)
        assert result.cards == cards("2H", "2D", "9C")
        assert game.table_pile == cards("JH", "2H", "2D", "9C")
        assert game.last_card_value == 9
        assert game.players[0].hand_cards == []
        assert game.players[0].blind_cards == cards("KS", "QS")
        assert game.current_player().id == "p1"

    def test_blind_ten_clears(self):
        game = rig_game(hands=[("2H",), ("4C",)], blinds=[("10C", "KS"), ("JS",)], table=("JH",))
        result = game.play_twos_with_blind("p0", cards("2H"), 0)
        assert result.pile_cleared
        assert game.table_pile == []
        assert game.last_card_value == 0

    def test_blind_eight_skips(self):
        game = rig_game(hands=[("2H",), ("4C",), ("5C",)], blinds=[("8C", "KS"), ("JS",), ("JD",)])
        game.play_twos_with_blind("p0", cards("2H"), 0)
        assert game.current_player().id == "p2"

    def test_non_two_rejected(self):
        game = rig_game(hands=[("2H", "3H"), ("4C",)], blinds=[("9C",), ("JS",)])
        before = snapshot(game)
        with pytest.raises(CardNotFound):
            game.play_twos_with_blind("p0", cards("2H", "3H"), 0)
        assert snapshot(game) == before

    def test_two_not_in_hand_rejected(self):
        game = rig_game(hands=[("2H",), ("4C",)], blinds=[("9C",), ("JS",)])
        with pytest.raises(CardNotFound):
            game.play_twos_with_blind("p0", cards("2H", "2S"), 0)
        with pytest.raises(CardNotFound):
            game.play_twos_with_blind("p0", cards("2H", "2H"), 0)
        assert game.players[0].hand_cards == cards("2H")

    def test_bad_blind_index_rejected(self):
        game = rig_game(hands=[("2H",), ("4C",)], blinds=[("9C",), ("JS",)])
        with pytest.raises(InvalidBlindIndex):
            game.play_twos_with_blind("p0", cards("2H"), 1)
        assert game.players[0].hand_cards == cards("2H")

    def test_no_twos_rejected(self):
        game = rig_game(hands=[("2H",), ("4C",)])
        with pytest.raises(InvalidPayload):
            game.play_twos_with_blind("p0", [], 0)

    def test_clears_must_throw(self):
        game = rig_game(hands=[("2H",), ("4C",)], blinds=[("9C", "KS"), ("JS",)], table=("2D",))
        game.take_table_cards("p0")
        game.play_twos_with_blind("p0", cards("2H", "2D"), 0)
        assert game.must_throw_after_taking is False
        assert game.player_who_took is None
        assert game.current_player().id == "p1"

    def test_combo_can_win(self):
        game = rig_game(hands=[("2H",), ("4C",)], blinds=[("9C",), ("JS",)])
        result = game.play_twos_with_blind("p0", cards("2H"), 0)
        assert result.winner_id == "p0"
        assert game.phase == GamePhase.ENDED


# =============================================================================
# Win detection
# =============================================================================

class TestWin:

    def test_last_card_wins_before_turn_advances(self):
        game = rig_game(hands=[("9H",), ("4C",), ("5C",)], blinds=[(), ("JS",), ("JD",)], table=("3S",))
        result = game.play_cards("p0", cards("9H"))
        assert result.game_over
        assert game.winner_id == "p0"
        assert game.ended
        assert game.current_player_index == 0

    def test_winning_eight_does_not_advance(self):
        game = rig_game(hands=[("8H",), ("4C",), ("5C",)], blinds=[(), ("JS",), ("JD",)], table=("3S",))
        game.play_cards("p0", cards("8H"))
        assert game.ended
        assert game.current_player_index == 0

    def test_no_win_while_deck_refills_hand(self):
        game = rig_game(hands=[("9H",), ("4C",)], blinds=[(), ("JS",)], table=("3S",), deck=("KH",))
        result = game.play_cards("p0", cards("9H"))
        assert not result.game_over
        assert game.players[0].hand_cards == cards("KH")

    def test_commands_rejected_after_game_ends(self):
        game = rig_game(hands=[("9H",), ("4C",)], blinds=[(), ("JS",)], table=("3S",))
        game.play_cards("p0", cards("9H"))
        with pytest.raises(GameNotInProgress):
            game.play_cards("p1", cards("4C"))
        with pytest.raises(GameNotInProgress):
            game.take_table_cards("p1")
        with pytest.raises(GameNotInProgress):
            game.reveal_blind_card("p1", 0)


# =============================================================================
# Removing players mid-game
# =============================================================================

class TestRemovePlayer:

    def test_removal_before_pointer_keeps_current_player(self):
        game = rig_game(hands=[("4C",), ("5C",), ("6C",), ("7C",)], current=2)
        game.remove_player("p0")
        assert game.current_player().id == "p2"

    def test_removal_after_pointer_keeps_current_player(self):
        game = rig_game(hands=[("4C",), ("5C",), ("6C",), ("7C",)], current=1)
        game.remove_player("p3")
        assert game.current_player().id == "p1"

    def test_removing_current_player_passes_turn_on(self):
        game = rig_game(hands=[("4C",), ("5C",), ("6C",), ("7C",)], current=1)
        game.remove_player("p1")
        assert game.current_player().id == "p2"

    def test_removing_current_last_seat_wraps(self):
        game = rig_game(hands=[("4C",), ("5C",), ("6C",), ("7C",)], current=3)
        game.remove_player("p3")
        assert game.current_player().id == "p0"

    def test_removing_current_player_in_reverse(self):
        game = rig_game(hands=[("4C",), ("5C",), ("6C",), ("7C",)], current=1)
        game.turn_direction = -1
        game.remove_player("p1")
        assert game.current_player().id == "p0"

    def test_removing_taker_clears_must_throw(self):
        game = rig_game(hands=[("4C",), ("5C",), ("6C",)], table=("9S",))
        game.take_table_cards("p0")
        game.remove_player("p0")
        assert game.must_throw_after_taking is False
        assert game.player_who_took is None
        assert game.current_player().id == "p1"

    def test_last_player_standing_wins(self):
        game = rig_game(hands=[("4C",), ("5C",)])
        game.remove_player("p0")
        assert game.ended
        assert game.winner_id == "p1"

    def test_departed_cards_leave_play(self):
        game = lobby(3)
        game.start_game("p0", seed=21)
        game.remove_player("p1")
        assert len(game.out_of_play) == 6
        assert game.card_count() == 52

    def test_creator_passes_to_next_player(self):
        game = lobby(3)
        game.remove_player("p0")
        assert game.creator_id == "p1"

    def test_remove_unknown_player(self):
        game = lobby(2)
        assert game.remove_player("nobody") is None


# =============================================================================
# State views
# =============================================================================

class TestGetState:

    def test_only_own_hand_is_visible(self):
        game = lobby(3)
        game.start_game("p0", seed=4)
        state = game.get_state("p1")

        by_id = {p["id"]: p for p in state["players"]}
        assert len(by_id["p1"]["handCards"]) == 3
        assert by_id["p0"]["handCards"] == []
        assert by_id["p2"]["handCards"] == []
        assert by_id["p0"]["handCount"] == 3
        assert by_id["p0"]["blindCount"] == 3
        assert by_id["p0"]["totalCards"] == 6
        assert "blindCards" not in by_id["p1"]

    def test_state_fields(self):
        game = lobby(2)
        game.start_game("p0", seed=4)
        state = game.get_state("p0")
        assert state["currentPlayer"] == "p0"
        assert state["deckCount"] == 52 - 12 - 1
        assert state["tableCards"] == [game.table_pile[0].to_dict()]
        assert state["mustThrowAfterTaking"] is False
        assert state["playerWhoTook"] is None
        assert state["phase"] == "in_progress"


# =============================================================================
# Card conservation over whole games
# =============================================================================

def _can_throw(player: Player) -> bool:
    """A non-2 is legal on the emptied pile; 2s can go out with a blind card."""
    if any(not c.is_wild for c in player.hand_cards):
        return True
    return bool(player.hand_cards) and bool(player.blind_cards)


def _bot_step(game: Game) -> bool:
    """
    Make some legal move for whoever must act.

    Returns False only when the current player holds nothing but 2s, has no
    blind cards, and the table offers nothing worth taking.
    """
    actor_id = game.player_who_took or game.current_player().id
    player = game.get_player(actor_id)
    hand = player.hand_cards

    singles = sorted(
        (c for c in hand if can_play_combo([c], game.last_card_value)),
        key=lambda c: c.numeric_value,
    )
    twos = [c for c in hand if c.is_wild]
    others = [c for c in hand if not c.is_wild]

    if singles:
        game.play_cards(actor_id, [singles[0]])
    elif twos and others:
        game.play_cards(actor_id, [twos[0], others[0]])
    elif twos and player.blind_cards:
        game.play_twos_with_blind(actor_id, twos, 0)
    elif player.can_reveal_blind() and player.blind_cards:
        game.reveal_blind_card(actor_id, 0)
    elif game.table_pile and (
        player.blind_cards or others or any(not c.is_wild for c in game.table_pile)
    ):
        game.take_table_cards(actor_id)
    else:
        return False
    return True


def _all_cards(game: Game) -> list[Card]:
    everything = list(game.deck.cards) + list(game.table_pile) + list(game.out_of_play)
    for player in game.players:
        everything += player.hand_cards + player.blind_cards
    return everything


class TestCardConservation:

    @pytest.mark.parametrize("seed", [1, 2, 3, 17, 42, 1234])
    @pytest.mark.parametrize("num_players", [2, 4, 6])
    def test_every_card_accounted_for(self, seed, num_players):
        game = lobby(num_players)
        game.start_game("p0", seed=seed)
        full_deck = Counter(Deck(seed=0).cards)

        for _ in range(600):
            if game.ended:
                break
            if not _bot_step(game):
                # Lone 2s with nothing to take: never while a throw is owed
                stalled = game.current_player()
                assert not game.must_throw_after_taking
                assert not stalled.blind_cards
                assert all(c.is_wild for c in stalled.hand_cards)
                break
            assert Counter(_all_cards(game)) == full_deck
            assert game.must_throw_after_taking == (game.player_who_took is not None)
            if game.must_throw_after_taking:
                assert _can_throw(game.get_player(game.player_who_took))
            assert 0 <= game.current_player_index < len(game.players)

        assert Counter(_all_cards(game)) == full_deck
