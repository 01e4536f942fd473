from pyudpreplay._cli import main

main()
