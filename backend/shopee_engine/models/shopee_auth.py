from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel


class GetAuthUrlCommand(BaseModel):
    action: Literal["get-auth-url"]
    redirect_uri: Optional[str] = None
    partner_account_id: Optional[str] = None


class GetTokenCommand(BaseModel):
    action: Literal["get-token"]
    code: str
    shop_id: Optional[int] = None
    main_account_id: Optional[int] = None
    partner_account_id: Optional[str] = None


class RefreshTokenCommand(BaseModel):
    action: Literal["refresh-token"]
    shop_id: int
    partner_account_id: Optional[str] = None


class GetStoredTokenCommand(BaseModel):
    action: Literal["get-stored-token"]
    shop_id: int


ShopeeAuthCommand = Annotated[
    Union[GetAuthUrlCommand, GetTokenCommand, RefreshTokenCommand, GetStoredTokenCommand],
    Field(discriminator="action"),
]


class ShopeeAuthAction(RootModel[ShopeeAuthCommand]):
    pass
