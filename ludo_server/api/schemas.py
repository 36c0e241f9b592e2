# ludo_server/api/schemas.py

from marshmallow import Schema, fields, pre_load, validates_schema, ValidationError
from marshmallow.validate import Length, Regexp, OneOf, Range

from ..game_core import constants as gc

ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
ROOM_ID_PATTERN = r"^(0x)?[0-9a-fA-F]{8,64}$"


def address_field(**kwargs):
    return fields.Str(
        required=True,
        validate=Regexp(ADDRESS_PATTERN, error="Адрес должен быть вида 0x + 40 hex-символов."),
        error_messages={"required": "Адрес игрока обязателен."},
        **kwargs
    )


# --- Базовая схема для очистки данных ---

class BaseRoomSchema(Schema):
    """
    Базовая схема, которая "очищает" (strip) все строковые поля
    перед любой валидацией.
    """
    @pre_load
    def strip_whitespace(self, data, **kwargs):
        if not isinstance(data, dict):
            return data
        return {k: v.strip() if isinstance(v, str) else v for k, v in data.items()}


# --- REST: создание и вход ---

class CreateRoomSchema(BaseRoomSchema):
    address = address_field()
    name = fields.Str(validate=Length(min=1, max=32), load_default=None)
    stake = fields.Int(validate=Range(min=0, error="Ставка не может быть отрицательной."), load_default=0)
    max_players = fields.Int(
        data_key="maxPlayers",
        validate=Range(min=gc.MIN_PLAYERS, max=gc.MAX_PLAYERS, error="Игроков должно быть от 2 до 4."),
        load_default=gc.MIN_PLAYERS
    )
    mode = fields.Str(validate=OneOf(gc.GAME_MODES), load_default=gc.MODE_CLASSIC)
    bots = fields.Int(validate=Range(min=0, max=gc.MAX_PLAYERS - 1), load_default=0)
    tx_ref = fields.Str(data_key="txRef", load_default=None, allow_none=True)
    room_id = fields.Str(
        data_key="roomId",
        validate=Regexp(ROOM_ID_PATTERN, error="Некорректный ID комнаты."),
        load_default=None
    )

    @validates_schema
    def validate_bots(self, data, **kwargs):
        if data.get('bots', 0) >= data.get('max_players', gc.MIN_PLAYERS):
            raise ValidationError("Ботов должно быть меньше, чем мест.", field_name="bots")


class JoinRoomSchema(BaseRoomSchema):
    address = address_field()
    name = fields.Str(validate=Length(min=1, max=32), load_default=None)
    tx_ref = fields.Str(data_key="txRef", load_default=None, allow_none=True)


# --- SocketIO: действия в матче ---

class JoinMatchSchema(BaseRoomSchema):
    room_id = fields.Str(
        data_key="roomId",
        required=True,
        validate=Length(min=1, max=66),
        error_messages={"required": "Необходимо указать roomId."}
    )
    address = address_field(data_key="playerAddress")


class RollDiceSchema(BaseRoomSchema):
    address = address_field(data_key="playerAddress")


class MoveTokenSchema(BaseRoomSchema):
    address = address_field(data_key="playerAddress")
    token_index = fields.Int(
        data_key="tokenIndex",
        required=True,
        validate=Range(min=0, max=gc.TOKENS_PER_PLAYER - 1, error="Номер фишки от 0 до 3."),
        error_messages={"required": "Необходимо указать tokenIndex."}
    )
