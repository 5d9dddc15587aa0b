class BaseType:

    def __init__(self):
        raise Exception("Cannot instantiate")

    @staticmethod
    def validate():
        raise NotImplementedError("Subclasses should implement this!")


class NumberType(BaseType):

    @staticmethod
    def validate(value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError("Value must be a number.")


class StringType(BaseType):

    @staticmethod
    def validate(value):
        if not isinstance(value, str):
            raise TypeError("Value must be a string.")


class OneOfType(BaseType):

    def __init__(self, *choices):
        self.choices = choices

    def validate(self, value):
        if value not in self.choices:
            raise TypeError(f"Value must be one of {', '.join(map(str, self.choices))}.")


class OptionalType(BaseType):

    def __init__(self, item_type):
        self.item_type = item_type

    def validate(self, value):
        if value is not None:
            if isinstance(self.item_type, dict):
                validate_contract(self.item_type, value)
            else:
                self.item_type.validate(value)


def validate_contract(contract, data):
    if not isinstance(data, dict):
        raise TypeError("Value must be an object.")
    for key, value in contract.items():
        if key not in data:
            if isinstance(value, OptionalType):
                continue
            raise KeyError(f"Missing key: {key}")
        if isinstance(value, dict):
            validate_contract(value, data[key])
        else:
            value.validate(data[key])


class ContractValidationError(Exception):
    """Exception raised when contract validation fails."""

    def __init__(self, error_type: str, message: str):
        self.error_type = error_type
        self.message = message
        super().__init__(message)


def validate_contract_or_raise(contract, data):
    """
    Validate a contract and raise ContractValidationError if validation fails.

    Args:
        contract: The contract schema to validate against
        data: The data to validate

    Raises:
        ContractValidationError: with error_type "missing_field", "type_mismatch"
            or "invalid"
    """
    try:
        validate_contract(contract, data)
    except KeyError as e:
        raise ContractValidationError(
            "missing_field", f"Missing required field: {str(e)}"
        ) from e
    except TypeError as e:
        raise ContractValidationError(
            "type_mismatch", f"Invalid field type: {str(e)}"
        ) from e
    except Exception as e:
        raise ContractValidationError("invalid", f"Validation error: {str(e)}") from e
