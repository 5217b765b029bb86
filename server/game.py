"""
Game logic for Palace.

This module implements the core game mechanics for Palace, including
card/deck management, player state, play legality, power cards and
turn flow.

Palace Rules Summary:
    - Each player is dealt 3 hand cards and 3 face-down blind cards
    - A play must meet or beat the value on top of the pile
    - Equal-rank cards may be played together as a combo
    - 2 is wild: never played alone, but any cards played with it go down
    - 10 clears the pile, 7 steps the turn back, 8 skips the next player
    - A player who cannot (or will not) beat the pile takes it, then must throw
    - Once the hand is gone, blind cards are played unseen
    - First player to shed every hand and blind card wins

Turn flow:
    LOBBY -> IN_PROGRESS -> ENDED
    IN_PROGRESS carries a must-throw flag while the player who took the
    pile owes a play.
"""

import random
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from constants import (
    BLIND_SIZE,
    BYPASS_VALUES,
    CLEAR_VALUE,
    EMPTY_PILE_VALUE,
    HAND_SIZE,
    MAX_PLAYERS,
    MIN_PLAYERS,
    RANK_NUMERIC_VALUES,
    REVERSE_VALUE,
    SKIP_VALUE,
    WILD_VALUE,
)
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
    PlayerNotFound,
    RoomFull,
)


class Suit(Enum):
    """Card suits for a standard deck."""

    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"


class Rank(Enum):
    """Card ranks with their display values, lowest to highest."""

    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"

    @property
    def numeric_value(self) -> int:
        return RANK_NUMERIC_VALUES[self.value]


@dataclass(frozen=True)
class Card:
    """
    A playing card. Cards compare equal by suit and rank.

    Attributes:
        suit: The card's suit (hearts, diamonds, clubs, spades).
        rank: The card's rank (2-10, J, Q, K, A).
    """

    suit: Suit
    rank: Rank

    @property
    def numeric_value(self) -> int:
        """Ordering value, 2-14 (J=11, Q=12, K=13, A=14)."""
        return self.rank.numeric_value

    @property
    def is_wild(self) -> bool:
        return self.numeric_value == WILD_VALUE

    def to_dict(self) -> dict:
        """Convert card to the wire format sent to clients."""
        return {
            "suit": self.suit.value,
            "value": self.rank.value,
            "numericValue": self.numeric_value,
        }

    def __str__(self) -> str:
        return f"{self.rank.value} of {self.suit.value}"


def cards_to_dicts(cards: list[Card]) -> list[dict]:
    return [card.to_dict() for card in cards]


class Deck:
    """
    A standard 52-card deck, shuffled once and dealt from the front.

    The deck can be initialized with a seed for deterministic dealing.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        """
        Initialize and shuffle a new deck.

        Args:
            seed: Optional random seed for deterministic shuffle.
                  If None, a random seed is generated and stored.
        """
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)
        self.cards: list[Card] = [Card(suit, rank) for suit in Suit for rank in Rank]
        self.shuffle()

    def shuffle(self) -> None:
        """Fisher-Yates shuffle driven by the deck's own seeded generator."""
        random.Random(self.seed).shuffle(self.cards)

    def draw(self) -> Optional[Card]:
        """
        Draw the front card of the deck.

        Returns:
            The drawn Card, or None if deck is empty.
        """
        if self.cards:
            return self.cards.pop(0)
        return None

    def draw_many(self, count: int) -> list[Card]:
        """Draw up to ``count`` cards; fewer if the deck runs out."""
        drawn = self.cards[:count]
        del self.cards[:count]
        return drawn

    def cards_remaining(self) -> int:
        """Return the number of cards left in the deck."""
        return len(self.cards)

    def __len__(self) -> int:
        return len(self.cards)


@dataclass
class Player:
    """
    A player in a Palace game.

    Attributes:
        id: Stable identifier for the player (survives reconnects).
        name: Display name, also the key used to rejoin.
        hand_cards: Cards visible to this player only.
        blind_cards: Face-down cards nobody has seen.
        is_ready: Whether the player has readied up in the lobby.
        connected: False while the player is inside the reconnect grace period.
    """

    id: str
    name: str
    hand_cards: list[Card] = field(default_factory=list)
    blind_cards: list[Card] = field(default_factory=list)
    is_ready: bool = False
    connected: bool = True

    def total_cards(self) -> int:
        return len(self.hand_cards) + len(self.blind_cards)

    def has_won(self) -> bool:
        """A player wins once both hand and blind cards are gone."""
        return not self.hand_cards and not self.blind_cards

    def can_reveal_blind(self) -> bool:
        """Blind cards may be turned only with an empty or all-2s hand."""
        return all(card.is_wild for card in self.hand_cards)

    def to_public_dict(self, reveal_hand: bool = False) -> dict:
        """
        Convert player to a dict for a client view.

        Args:
            reveal_hand: Include hand contents (only for the player themself).

        Returns:
            Dict with counts always, and hand cards only when revealed.
        """
        return {
            "id": self.id,
            "name": self.name,
            "handCards": cards_to_dicts(self.hand_cards) if reveal_hand else [],
            "handCount": len(self.hand_cards),
            "blindCount": len(self.blind_cards),
            "totalCards": self.total_cards(),
            "isReady": self.is_ready,
            "connected": self.connected,
        }


class GamePhase(Enum):
    """
    Phases of a Palace game.

    Flow: LOBBY -> IN_PROGRESS -> ENDED
    """

    LOBBY = "lobby"              # Waiting for players to join and ready up
    IN_PROGRESS = "in_progress"  # Cards dealt, taking turns
    ENDED = "ended"              # Someone shed all their cards


# -----------------------------------------------------------------------------
# Play legality
# -----------------------------------------------------------------------------

def can_play_card(card: Card, last_card_value: int) -> bool:
    """
    Check whether a single card beats the pile.

    2 and 10 bypass the hierarchy; anything else must meet or exceed
    the pile value. This does not bar a lone 2, see can_play_combo().
    """
    if card.numeric_value in BYPASS_VALUES:
        return True
    return card.numeric_value >= last_card_value


def can_play_combo(cards: list[Card], last_card_value: int) -> bool:
    """
    Check whether a set of cards may be played together.

    Admissible plays:
        - A single card that beats the pile, other than a lone 2
        - Equal-rank cards whose shared value meets the pile
        - Any cards played with at least one 2 (needs one non-2 companion)

    Args:
        cards: Cards in submission order.
        last_card_value: Value the play has to meet.

    Returns:
        True if the play is legal.
    """
    if not cards:
        return False

    if len(cards) == 1:
        card = cards[0]
        if card.is_wild:
            return False
        return can_play_card(card, last_card_value)

    if any(card.is_wild for card in cards):
        return any(not card.is_wild for card in cards)

    first_value = cards[0].numeric_value
    if any(card.numeric_value != first_value for card in cards):
        return False
    return first_value >= last_card_value


def pile_value_after(cards: list[Card]) -> int:
    """
    Value the next play must meet after ``cards`` go down.

    A wild combo is valued by its highest non-2 companion, anything else
    by the last card submitted.
    """
    if len(cards) > 1 and any(card.is_wild for card in cards):
        return max(card.numeric_value for card in cards if not card.is_wild)
    return cards[-1].numeric_value


@dataclass
class PlayResult:
    """
    Outcome of a successful play.

    Attributes:
        player_id: Who played.
        cards: Cards that went down, in submission order.
        pile_cleared: Whether a 10 sent the pile out of play.
        winner_id: Set when this play ended the game.
    """

    player_id: str
    cards: list[Card]
    pile_cleared: bool = False
    winner_id: Optional[str] = None

    @property
    def game_over(self) -> bool:
        return self.winner_id is not None


@dataclass
class Game:
    """
    Main game state and rules controller for Palace.

    Every command method validates completely before mutating anything,
    so a raised GameError always leaves the game exactly as it was.

    Attributes:
        room_code: Code of the room that owns this game.
        players: Players in turn order (max 6).
        deck: The draw pile; None until the game starts.
        table_pile: Played cards; the last element is the top.
        out_of_play: Cards removed by a 10 or left behind by departed players.
        current_player_index: Index of the player whose turn it is.
        turn_direction: +1 or -1.
        skip_next_player: Next advance moves two seats instead of one.
        phase: Current game phase.
        last_card_value: Value the next play must meet (0 for an empty pile).
        must_throw_after_taking: A player owes a play after taking the pile.
        player_who_took: ID of that player while the flag is set.
        creator_id: ID of the player allowed to start the game.
        winner_id: ID of the winner once the game has ended.
    """

    room_code: str = ""
    players: list[Player] = field(default_factory=list)
    deck: Optional[Deck] = None
    table_pile: list[Card] = field(default_factory=list)
    out_of_play: list[Card] = field(default_factory=list)
    current_player_index: int = 0
    turn_direction: int = 1
    skip_next_player: bool = False
    phase: GamePhase = GamePhase.LOBBY
    last_card_value: int = EMPTY_PILE_VALUE
    must_throw_after_taking: bool = False
    player_who_took: Optional[str] = None
    creator_id: Optional[str] = None
    winner_id: Optional[str] = None

    @property
    def started(self) -> bool:
        return self.phase != GamePhase.LOBBY

    @property
    def ended(self) -> bool:
        return self.phase == GamePhase.ENDED

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def add_player(self, player: Player) -> None:
        """
        Add a player to the end of the turn order.

        The first player ever added becomes the creator.

        Raises:
            GameAlreadyStarted: If cards have already been dealt.
            RoomFull: If the room already holds the maximum.
        """
        if self.started:
            raise GameAlreadyStarted()
        if len(self.players) >= MAX_PLAYERS:
            raise RoomFull()
        self.players.append(player)
        if self.creator_id is None:
            self.creator_id = player.id

    def remove_player(self, player_id: str) -> Optional[Player]:
        """
        Remove a player, keeping the turn on the right person.

        Players before the pointer shift it back by one; removing the
        current player passes the turn to whoever followed them. Their
        cards leave play. A game left with a single player ends in that
        player's favour.

        Args:
            player_id: The ID of the player to remove.

        Returns:
            The removed Player, or None if not found.
        """
        index = self.index_of(player_id)
        if index is None:
            return None

        removed = self.players.pop(index)

        if self.creator_id == player_id:
            self.creator_id = self.players[0].id if self.players else None

        if self.phase != GamePhase.IN_PROGRESS:
            return removed

        self.out_of_play.extend(removed.hand_cards)
        self.out_of_play.extend(removed.blind_cards)
        removed.hand_cards = []
        removed.blind_cards = []

        if self.player_who_took == player_id:
            self.must_throw_after_taking = False
            self.player_who_took = None

        if not self.players:
            self.current_player_index = 0
            return removed

        if index < self.current_player_index:
            self.current_player_index -= 1
        elif index == self.current_player_index and self.turn_direction < 0:
            self.current_player_index = index - 1
        self.current_player_index %= len(self.players)

        if len(self.players) < MIN_PLAYERS:
            self._finish(self.players[0])

        return removed

    def get_player(self, player_id: str) -> Optional[Player]:
        """Find a player by ID, or None."""
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def index_of(self, player_id: str) -> Optional[int]:
        for i, player in enumerate(self.players):
            if player.id == player_id:
                return i
        return None

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if self.players and self.phase == GamePhase.IN_PROGRESS:
            return self.players[self.current_player_index]
        return None

    def set_ready(self, player_id: str) -> bool:
        """
        Mark a player ready in the lobby.

        Returns:
            True if the flag was applied, False once the game has started.

        Raises:
            PlayerNotFound: If the player is not in this game.
        """
        player = self.get_player(player_id)
        if not player:
            raise PlayerNotFound()
        if self.started:
            return False
        player.is_ready = True
        return True

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self, player_id: str, seed: Optional[int] = None) -> bool:
        """
        Deal and begin play.

        Silently does nothing if the game has already started.

        Args:
            player_id: Who asked to start; must be the creator.
            seed: Optional deck seed for a reproducible deal.

        Returns:
            True if the game started, False if it was already running.

        Raises:
            NotCreator: If someone other than the creator asked.
            NotReady: If fewer than 2 players, or anyone is not ready.
        """
        if self.started:
            return False
        if player_id != self.creator_id:
            raise NotCreator()
        if len(self.players) < MIN_PLAYERS or not all(p.is_ready for p in self.players):
            raise NotReady()

        self.deck = Deck(seed)
        self.table_pile = []
        self.out_of_play = []
        self.current_player_index = 0
        self.turn_direction = 1
        self.skip_next_player = False
        self.must_throw_after_taking = False
        self.player_who_took = None
        self.winner_id = None

        for player in self.players:
            player.hand_cards = self.deck.draw_many(HAND_SIZE)
            player.blind_cards = self.deck.draw_many(BLIND_SIZE)

        # Opening discard
        first_discard = self.deck.draw()
        if first_discard:
            self.table_pile.append(first_discard)
            self.last_card_value = first_discard.numeric_value
        else:
            self.last_card_value = EMPTY_PILE_VALUE

        self.phase = GamePhase.IN_PROGRESS
        return True

    # -------------------------------------------------------------------------
    # Player Actions
    # -------------------------------------------------------------------------

    def play_cards(self, player_id: str, cards: list[Card]) -> PlayResult:
        """
        Play one or more cards from hand, or from blind once the hand is empty.

        Args:
            player_id: ID of the player acting.
            cards: Cards to play, in submission order.

        Returns:
            PlayResult describing what went down and whether the game ended.

        Raises:
            GameNotInProgress, NotYourTurn, PlayerNotFound,
            InvalidCombination, CardNotFound.
        """
        player = self._acting_player(player_id)

        if not can_play_combo(cards, self.last_card_value):
            raise InvalidCombination()

        new_hand, new_blind = self._resolve_sources(player, cards)

        # Validation complete - apply
        player.hand_cards = new_hand
        player.blind_cards = new_blind
        self.table_pile.extend(cards)
        self.last_card_value = pile_value_after(cards)
        pile_cleared = self._apply_power_effects(cards)

        return self._complete_play(player, cards, pile_cleared)

    def take_table_cards(self, player_id: str) -> list[Card]:
        """
        Pick up the whole pile into hand.

        The turn stays with the taker, who must then throw a card. A take
        is refused unless the taker is left with something to throw: a
        non-2 card, or 2s plus a blind card to play them with.

        Returns:
            The cards picked up.

        Raises:
            GameNotInProgress, NotYourTurn, PlayerNotFound,
            InvalidCombination.
        """
        self._require_in_progress()
        if self.must_throw_after_taking:
            if self.player_who_took == player_id:
                raise NotYourTurn("You must throw a card first")
            raise NotYourTurn("Player who took cards must throw first")
        player = self._acting_player(player_id)

        if not self.table_pile:
            raise InvalidCombination("No cards on the table to take")
        if not player.blind_cards and all(
            card.is_wild for card in player.hand_cards + self.table_pile
        ):
            raise InvalidCombination("Taking the table would leave you nothing to throw")

        taken = self.table_pile
        player.hand_cards.extend(taken)
        self.table_pile = []
        self.last_card_value = EMPTY_PILE_VALUE
        self.must_throw_after_taking = True
        self.player_who_took = player_id
        return taken

    def reveal_blind_card(self, player_id: str, blind_index: int) -> tuple[Card, bool]:
        """
        Turn one blind card up into hand without ending the turn.

        Only allowed when the hand is empty or holds nothing but 2s. While
        the player owes a throw after taking, the last blind card stays down
        so their 2s always have a companion to go out with.

        Args:
            player_id: ID of the player acting.
            blind_index: Position in the player's blind cards.

        Returns:
            (revealed card, whether another reveal is allowed). Revealing a
            2 with blind cards left permits another reveal.

        Raises:
            GameNotInProgress, NotYourTurn, PlayerNotFound,
            InvalidCombination, InvalidBlindIndex.
        """
        player = self._acting_player(player_id)

        if not player.can_reveal_blind():
            raise InvalidCombination(
                "Can only reveal blind cards when hand is empty or all hand cards are 2s"
            )
        if not 0 <= blind_index < len(player.blind_cards):
            raise InvalidBlindIndex()
        if self.must_throw_after_taking and len(player.blind_cards) == 1:
            raise InvalidCombination("Play your 2s with the last blind card instead")

        card = player.blind_cards.pop(blind_index)
        player.hand_cards.append(card)
        can_reveal_another = card.is_wild and bool(player.blind_cards)
        return card, can_reveal_another

    def play_twos_with_blind(
        self,
        player_id: str,
        twos: list[Card],
        blind_index: int,
    ) -> PlayResult:
        """
        Play 2s from hand together with an unseen blind card.

        The blind card is revealed as it lands and sets the pile value; its
        own power effect applies.

        Args:
            player_id: ID of the player acting.
            twos: Rank-2 cards from hand.
            blind_index: Position of the blind card to play.

        Returns:
            PlayResult for the combined play.

        Raises:
            GameNotInProgress, NotYourTurn, PlayerNotFound, InvalidPayload,
            CardNotFound, InvalidBlindIndex.
        """
        player = self._acting_player(player_id)

        if not twos:
            raise InvalidPayload("No Card 2s provided")

        held = Counter(player.hand_cards)
        for card, count in Counter(twos).items():
            if not card.is_wild or held[card] < count:
                raise CardNotFound(f"Card 2 {card.rank.value}{card.suit.value} not found in hand")

        if not 0 <= blind_index < len(player.blind_cards):
            raise InvalidBlindIndex()

        # Validation complete - apply
        new_hand = list(player.hand_cards)
        for card in twos:
            new_hand.remove(card)
        player.hand_cards = new_hand
        blind_card = player.blind_cards.pop(blind_index)

        played = list(twos) + [blind_card]
        self.table_pile.extend(played)
        self.last_card_value = blind_card.numeric_value
        pile_cleared = self._apply_power_effects([blind_card])

        return self._complete_play(player, played, pile_cleared)

    # -------------------------------------------------------------------------
    # Turn Flow (Internal)
    # -------------------------------------------------------------------------

    def _require_in_progress(self) -> None:
        if self.phase == GamePhase.LOBBY:
            raise GameNotInProgress("Game not started")
        if self.phase == GamePhase.ENDED:
            raise GameNotInProgress("Game is over")

    def _acting_player(self, player_id: str) -> Player:
        """
        Check that this player may act right now and return them.

        While someone owes a throw after taking the pile, only they may act;
        otherwise only the player at the turn pointer.
        """
        self._require_in_progress()

        player = self.get_player(player_id)
        if not player:
            raise PlayerNotFound()

        if self.must_throw_after_taking:
            if self.player_who_took != player_id:
                raise NotYourTurn("Player who took cards must throw first")
        elif self.players[self.current_player_index].id != player_id:
            raise NotYourTurn()

        return player

    @staticmethod
    def _resolve_sources(player: Player, cards: list[Card]) -> tuple[list[Card], list[Card]]:
        """
        Work out the hand and blind cards left after removing ``cards``.

        Each card comes from the hand if it is there; otherwise, once the
        hand has run out, from the blind cards. Runs on copies so nothing
        changes unless every card is found.

        Raises:
            CardNotFound: If any card cannot be located.
        """
        hand = list(player.hand_cards)
        blind = list(player.blind_cards)
        for card in cards:
            if card in hand:
                hand.remove(card)
            elif not hand and card in blind:
                blind.remove(card)
            else:
                raise CardNotFound()
        return hand, blind

    def _apply_power_effects(self, cards: list[Card]) -> bool:
        """
        Apply 10/7/8 effects for each card, in order.

        Returns:
            True if the pile was cleared.
        """
        cleared = False
        for card in cards:
            value = card.numeric_value
            if value == CLEAR_VALUE:
                self.out_of_play.extend(self.table_pile)
                self.table_pile = []
                self.last_card_value = EMPTY_PILE_VALUE
                cleared = True
            elif value == REVERSE_VALUE:
                # One step back now; the skip makes the next advance land one past the player
                self.current_player_index = (
                    self.current_player_index - self.turn_direction
                ) % len(self.players)
                self.skip_next_player = True
            elif value == SKIP_VALUE:
                self.skip_next_player = True
        return cleared

    def _replenish_hand(self, player: Player) -> None:
        """Draw from the deck until the hand holds 3 cards or the deck is empty."""
        if not self.deck:
            return
        missing = HAND_SIZE - len(player.hand_cards)
        if missing > 0:
            player.hand_cards.extend(self.deck.draw_many(missing))

    def _complete_play(self, player: Player, cards: list[Card], pile_cleared: bool) -> PlayResult:
        """Shared tail of every play: refill, clear must-throw, win check, advance."""
        self._replenish_hand(player)

        self.must_throw_after_taking = False
        self.player_who_took = None

        result = PlayResult(player_id=player.id, cards=list(cards), pile_cleared=pile_cleared)

        if player.has_won():
            self._finish(player)
            result.winner_id = player.id
            return result

        self.next_player()
        return result

    def next_player(self) -> None:
        """
        Advance the turn pointer.

        Moves two seats when the skip flag is set (clearing it), else one.
        """
        step = self.turn_direction
        if self.skip_next_player:
            self.skip_next_player = False
            step *= 2
        self.current_player_index = (self.current_player_index + step) % len(self.players)

    def _finish(self, winner: Player) -> None:
        self.phase = GamePhase.ENDED
        self.winner_id = winner.id
        self.must_throw_after_taking = False
        self.player_who_took = None
        self.skip_next_player = False

    # -------------------------------------------------------------------------
    # State Queries
    # -------------------------------------------------------------------------

    def table_top(self) -> Optional[Card]:
        """Get the top card of the pile (if any)."""
        if self.table_pile:
            return self.table_pile[-1]
        return None

    def card_count(self) -> int:
        """Count every card the game knows about, wherever it is."""
        return (
            (self.deck.cards_remaining() if self.deck else 0)
            + sum(p.total_cards() for p in self.players)
            + len(self.table_pile)
            + len(self.out_of_play)
        )

    def player_views(self, for_player_id: Optional[str]) -> list[dict]:
        """Public player list; only the recipient's own hand is revealed."""
        views = []
        for player in self.players:
            view = player.to_public_dict(reveal_hand=player.id == for_player_id)
            view["isCreator"] = player.id == self.creator_id
            views.append(view)
        return views

    def get_state(self, for_player_id: Optional[str]) -> dict:
        """
        Get the full game state for a specific player.

        Args:
            for_player_id: The player who will receive this state.
                Only their own hand cards are included.

        Returns:
            Dict containing phase, players, current turn, pile, deck count
            and the must-throw flags.
        """
        current = self.current_player()
        winner = self.get_player(self.winner_id) if self.winner_id else None

        return {
            "roomCode": self.room_code,
            "phase": self.phase.value,
            "started": self.started,
            "ended": self.ended,
            "players": self.player_views(for_player_id),
            "currentPlayer": current.id if current else None,
            "tableCards": cards_to_dicts(self.table_pile),
            "lastCardValue": self.last_card_value,
            "deckCount": self.deck.cards_remaining() if self.deck else 0,
            "turnDirection": self.turn_direction,
            "mustThrowAfterTaking": self.must_throw_after_taking,
            "playerWhoTook": self.player_who_took,
            "winner": winner.name if winner else None,
        }
