"""
Game rule configuration and validation.
"""

from pydantic import BaseModel, Field, field_validator


class RuleConfig(BaseModel):
    """Configuration for game rules and settings."""

    min_card_value: int = Field(
        default=2,
        ge=2,
        description="Lowest card value in the deck"
    )
    max_card_value: int = Field(
        default=99,
        le=99,
        description="Highest card value in the deck"
    )
    ascending_start: int = Field(
        default=1,
        description="Boundary value of the ascending piles"
    )
    descending_start: int = Field(
        default=100,
        description="Boundary value of the descending piles"
    )
    reverse_jump: int = Field(
        default=10,
        ge=1,
        description="Exact distance that allows playing against a pile's direction"
    )
    min_players: int = Field(
        default=1,
        ge=1,
        le=5,
        description="Minimum number of players required to deal"
    )
    max_players: int = Field(
        default=5,
        ge=1,
        le=5,
        description="Maximum number of players allowed"
    )
    min_cards_per_turn: int = Field(
        default=2,
        ge=1,
        description="Cards a player must play each turn while the deck lasts"
    )
    min_cards_deck_empty: int = Field(
        default=1,
        ge=1,
        description="Cards a player must play each turn once the deck is empty"
    )
    history_limit: int = Field(
        default=10,
        ge=1,
        description="Number of undo snapshots kept within a turn"
    )
    chat_limit: int = Field(
        default=100,
        ge=1,
        description="Number of chat messages kept per room"
    )

    @field_validator('max_players')
    @classmethod
    def validate_max_players(cls, v, info):
        """Validate maximum players doesn't fall below minimum."""
        min_players = info.data.get('min_players', 1)
        if v < min_players:
            raise ValueError(f'max_players ({v}) must be >= min_players ({min_players})')
        return v

    def validate_player_count(self, player_count: int) -> bool:
        """Check if a player count is valid for this configuration."""
        return self.min_players <= player_count <= self.max_players

    def get_deck_size(self) -> int:
        """Get the total number of cards in the deck."""
        return self.max_card_value - self.min_card_value + 1

    def get_hand_size(self, player_count: int) -> int:
        """Get the starting (and refill) hand size for a player count."""
        if player_count == 1:
            return 8
        if player_count == 2:
            return 7
        return 6


# Default configuration instance
default_rules = RuleConfig()


def create_rules(**overrides) -> RuleConfig:
    """Create a RuleConfig with optional overrides."""
    config_dict = default_rules.model_dump()
    config_dict.update(overrides)
    return RuleConfig(**config_dict)
